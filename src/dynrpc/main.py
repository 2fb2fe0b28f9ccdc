import json

from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.errors import RpcEngineError
from dynrpc.grpcreflectionloader import grpcreflectionloader
from dynrpc.grpcunaryclient import grpcunaryclient
from dynrpc.helper import helper
from dynrpc.metadata import GrpcMetadata
from dynrpc.MockDataGenerator import MockDataGenerator
from dynrpc.ProtoLoader import ProtoLoader, ProtoLoadError


class main(helper):
    """Caller-facing entry point returning ``{'error': bool, 'data': ...}`` envelopes.

    One instance owns one ``DescriptorIndex``; every proto loaded through it
    stays available to later calls.
    """

    def __init__(self, host, creds=None, index=None, channel_factory=None):
        super().__init__()
        self.host = host
        self.creds = creds if isinstance(creds, dict) else {}
        self.index = index if index is not None else DescriptorIndex()
        self.loader = ProtoLoader(self.index)
        self.client = grpcunaryclient(self.index, channel_factory=channel_factory, creds=self.creds)
        self.channel_factory = channel_factory

    def _services_summary(self):
        data_to_return = {}
        for service in self.index.services():
            data_to_return[service.full_name] = {
                'full_name': service.full_name,
                'name': service.name,
                'methods': [method.name for method in service.methods],
            }
        return data_to_return

    def get_services(self, proto_path=None, proto_import_path=None):
        response = {'error': True, 'data': None}
        try:
            if proto_path:
                self.loader.load_proto(proto_path, proto_import_path)
            else:
                if not self.host:
                    response['data'] = 'Host is required'
                    return response
                reflection = grpcreflectionloader(self.index, self.host, channel_factory=self.channel_factory, creds=self.creds)
                reflection.load_all()
            return {'error': False, 'data': self._services_summary()}
        except (RpcEngineError, ProtoLoadError) as e:
            self.log('get_services', [proto_path, proto_import_path], exception=e)
            return {'error': True, 'data': self.exception_to_serializable(e)}

    def get_message_auto_populate(self, service_name, method_name):
        response = {'error': True, 'data': None}
        if not service_name:
            response['data'] = 'Empty service name is not passed'
            return response
        if not method_name:
            response['data'] = 'Empty method is not passed'
            return response

        method = self.index.find_method(service_name, method_name)
        if method is None:
            response['data'] = f"Method '{method_name}' not found in '{service_name}'"
            return response
        try:
            template = MockDataGenerator(self.index).get_message_template(method.input_type)
            return {'error': False, 'data': template}
        except RpcEngineError as e:
            self.log('get_message_auto_populate', [service_name, method_name], exception=e)
            return {'error': True, 'data': self.exception_to_serializable(e)}

    def build_metadata(self, meta_data=None, auth_data=None) -> GrpcMetadata:
        metadata = GrpcMetadata.from_pairs(meta_data)
        if auth_data and isinstance(auth_data, dict):
            auth_data_response = self.convert_auth(auth_data)
            if isinstance(auth_data_response.get('data'), tuple):
                key, value = auth_data_response['data']
                metadata.headers[key] = value
        return metadata

    def execute_request(self, service_name, method_name, request_data, meta_data=None, auth_data=None, timeout=None):
        response = {'error': True, 'data': None}
        if not self.host:
            response['data'] = 'Host is required'
            return response
        if not service_name:
            response['data'] = 'Please choose the service'
            return response
        if not request_data:
            response['data'] = 'Please fill the request'
            return response

        method = self.index.find_method(service_name, method_name)
        if method is None:
            response['data'] = f"Method '{method_name}' not found in '{service_name}'"
            return response

        if isinstance(request_data, dict):
            request_data = json.dumps(request_data)

        try:
            result = self.client.execute_unary(
                request_data,
                self.host,
                method,
                metadata=self.build_metadata(meta_data, auth_data),
                timeout=timeout,
            )
            return {'error': False, 'data': result.to_dict()}
        except RpcEngineError as e:
            return {'error': True, 'data': self.exception_to_serializable(e, {"service": service_name, "method": method_name})}
