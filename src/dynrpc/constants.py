import os

DEFAULT_GRPC_PORT = 50051
TLS_PORT = 443
BINARY_METADATA_SUFFIX = '-bin'
ADDRESS_PREFIXES = ('http://', 'https://')

LOG_FILE = os.environ.get('DYNRPC_LOG_FILE', 'error.log')
LOG_TO_CONSOLE = os.environ.get('DYNRPC_LOG_TO_CONSOLE', '').lower() in ('1', 'true', 'yes')

# seconds, None means no deadline
DEFAULT_TIMEOUT = float(os.environ['DYNRPC_TIMEOUT']) if os.environ.get('DYNRPC_TIMEOUT') else None
CANCEL_POLL_INTERVAL = 0.05

SUCCESS_STATUS_CODE = 0
SUCCESS_STATUS_MESSAGE = 'OK'

WELL_KNOWN_PROTO_PREFIX = 'google/protobuf/'
EXPORT_FILENAME_FORMAT = 'response_%Y%m%d_%H%M%S.json'
