from dynrpc.address import RpcAddress, resolve_address
from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.DynamicMessage import DynamicMessage
from dynrpc.errors import (
    InvalidAddress,
    InvalidInputEncoding,
    MalformedWireData,
    MessageTypeNotFound,
    RpcEngineError,
    RpcFailed,
    StreamingNotSupported,
    Timeout,
    TypeMismatch,
    Unavailable,
    Unknown,
)
from dynrpc.grpcunaryclient import UnaryResponse, grpcunaryclient
from dynrpc.metadata import GrpcMetadata
from dynrpc.ProtobufConverter import ProtobufConverter
from dynrpc.ProtoLoader import ProtoLoader, ProtoLoadError
from dynrpc.WireCodec import WireCodec
