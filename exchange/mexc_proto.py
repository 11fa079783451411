"""
MEXC spot push schema (websocket-proto, kline subset).

    message PushDataV3ApiWrapper {
      string channel = 1;
      oneof body { PublicSpotKlineV3Api publicSpotKline = 308; }
      string symbol = 3;
      string symbolId = 4;
      int64 createTime = 5;
      int64 sendTime = 6;
    }

Built into a private descriptor pool at import time, so no protoc step is needed.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "mexc.spot"

_FIELD = descriptor_pb2.FieldDescriptorProto


def _add_field(message, name, number, field_type, type_name=None, oneof_index=None):
    field = message.field.add()
    field.name = name
    field.json_name = name
    field.number = number
    field.type = field_type
    field.label = _FIELD.LABEL_OPTIONAL
    if type_name is not None:
        field.type_name = type_name
    if oneof_index is not None:
        field.oneof_index = oneof_index


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "mexc_spot_kline.proto"
    file_proto.package = PACKAGE
    file_proto.syntax = "proto3"

    kline = file_proto.message_type.add()
    kline.name = "PublicSpotKlineV3Api"
    _add_field(kline, "interval", 1, _FIELD.TYPE_STRING)
    _add_field(kline, "windowStart", 2, _FIELD.TYPE_INT64)
    _add_field(kline, "openingPrice", 3, _FIELD.TYPE_STRING)
    _add_field(kline, "closingPrice", 4, _FIELD.TYPE_STRING)
    _add_field(kline, "highestPrice", 5, _FIELD.TYPE_STRING)
    _add_field(kline, "lowestPrice", 6, _FIELD.TYPE_STRING)
    _add_field(kline, "volume", 7, _FIELD.TYPE_STRING)
    _add_field(kline, "amount", 8, _FIELD.TYPE_STRING)
    _add_field(kline, "windowEnd", 9, _FIELD.TYPE_INT64)

    wrapper = file_proto.message_type.add()
    wrapper.name = "PushDataV3ApiWrapper"
    wrapper.oneof_decl.add().name = "body"
    _add_field(wrapper, "channel", 1, _FIELD.TYPE_STRING)
    _add_field(wrapper, "symbol", 3, _FIELD.TYPE_STRING)
    _add_field(wrapper, "symbolId", 4, _FIELD.TYPE_STRING)
    _add_field(wrapper, "createTime", 5, _FIELD.TYPE_INT64)
    _add_field(wrapper, "sendTime", 6, _FIELD.TYPE_INT64)
    _add_field(
        wrapper, "publicSpotKline", 308, _FIELD.TYPE_MESSAGE,
        type_name=f".{PACKAGE}.PublicSpotKlineV3Api", oneof_index=0,
    )
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())

PublicSpotKlineV3Api = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.PublicSpotKlineV3Api")
)
PushDataV3ApiWrapper = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.PushDataV3ApiWrapper")
)
