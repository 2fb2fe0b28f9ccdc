import base64
import logging
import traceback
from typing import Any, Dict, Optional, Tuple

import grpc
from oauthlib.oauth2 import BackendApplicationClient
from requests_oauthlib import OAuth2Session

from dynrpc.constants import LOG_FILE, LOG_TO_CONSOLE

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_END_MARKER = '-' * 100 + ':end'


def configure_logger(log_to_console: bool = LOG_TO_CONSOLE) -> logging.Logger:
    """Returns the shared ``dynrpc`` logger, attaching handlers on first use only."""
    logger = logging.getLogger("dynrpc")
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = []
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    if log_to_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    if not handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def to_serializable(obj):
    """Recursively converts objects to JSON-friendly formats"""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(x) for x in obj]
    if isinstance(obj, (bytes, bytearray)):
        return obj.decode('utf-8', errors='replace')
    return str(obj)


def _call_or_none(error, name):
    attribute = getattr(error, name, None)
    return attribute() if callable(attribute) else None


class helper:
    """Mixin giving every component the shared logger and the error/auth helpers."""

    def __init__(self, log_to_console=LOG_TO_CONSOLE):
        self.logger = configure_logger(log_to_console)

    def log(self, function_name: str, args=None, kwargs=None, output=None, exception: Exception = None):
        self.logger.info(f"Function: {function_name}")
        if args:
            self.logger.debug(f"Input args: {args}")
        if kwargs:
            self.logger.debug(f"Input kwargs: {kwargs}")
        if output is not None:
            self.logger.debug(f"Output: {output}")
        if exception is not None:
            self.logger.error(f"Exception in function '{function_name}': {exception}")
            self.logger.error(''.join(traceback.format_exception(type(exception), exception, exception.__traceback__)))
        self.logger.info(LOG_END_MARKER)

    def exception_to_serializable(self, error: Exception, context: Dict[str, Any] = None) -> Dict[str, Any]:
        described = {
            "type": error.__class__.__name__,
            "message": str(error),
            "details": {},
        }

        if callable(getattr(error, 'to_dict', None)):
            described["details"] = error.to_dict()
        elif isinstance(error, grpc.RpcError) and callable(getattr(error, 'code', None)):
            code = error.code()
            described.update({
                "subtype": "grpc_error",
                "code_name": getattr(code, 'name', None),
                "code_value": getattr(code, 'value', [None])[0],
                "details": _call_or_none(error, 'details'),
                "debug_info": _call_or_none(error, 'debug_error_string'),
            })

        result = {"success": False, "error": described}
        if context:
            result["context"] = context
        return to_serializable(result)

    def get_oauth2_token(self, client_id, client_secret, token_url, scope=None):
        client = BackendApplicationClient(client_id=client_id)
        oauth = OAuth2Session(client=client, scope=scope)
        return oauth.fetch_token(token_url=token_url,
                                 client_id=client_id,
                                 client_secret=client_secret)

    def _api_key_header(self, data) -> Tuple[str, str]:
        return data['key_name'].lower(), data['key_value']

    def _bearer_token_header(self, data) -> Tuple[str, str]:
        return 'authorization', f'Bearer {data["token"]}'

    def _basic_auth_header(self, data) -> Tuple[str, str]:
        credentials = f"{data.get('username', '')}:{data.get('password', '')}"
        return 'authorization', 'Basic ' + base64.b64encode(credentials.encode('utf-8')).decode('utf-8')

    def _oauth2_header(self, data) -> Optional[Tuple[str, str]]:
        if not all(key in data for key in ("client_id", "client_secret", "token_url")):
            return None
        scope = data.get('scope')
        if scope is not None and not isinstance(scope, list):
            scope = [scope]
        token = self.get_oauth2_token(data['client_id'], data['client_secret'], data['token_url'], scope)
        if not token or "access_token" not in token:
            return None
        return 'authorization', f"Bearer {token['access_token']}"

    def convert_auth(self, data):
        """
        Turns an auth description into a single metadata pair.

        Supported ``auth_type`` values: api_key, bearer_token, basic_auth, oauth2.
        Returns ``{'error': bool, 'data': (key, value) | None, 'auth_type': str | None}``.
        """
        if not isinstance(data, dict) or not data.get('auth_type'):
            return {'error': False, 'data': None, 'auth_type': None}

        auth_type = data['auth_type']
        builders = {
            'api_key': self._api_key_header,
            'bearer_token': self._bearer_token_header,
            'basic_auth': self._basic_auth_header,
            'oauth2': self._oauth2_header,
        }
        builder = builders.get(auth_type)
        if builder is None:
            return {'error': True, 'data': None, 'auth_type': auth_type}

        try:
            header = builder(data)
        except Exception as e:
            self.log(function_name='convert_auth', args=[auth_type], exception=e)
            return self.exception_to_serializable(e)
        return {'error': header is None, 'data': header, 'auth_type': auth_type}
