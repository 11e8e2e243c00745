"""Producer configuration and its mapped, ready-to-use form."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .mapping import PROTO_TYPE_MAP, EndianType, MapConfigBase
from .message import FIELD_NAMES
from .render import DEFAULT_RENDERERS, RENDERERS, RenderFunc, RendererID


@dataclass
class NetFlowMapField:
    """Maps a NetFlow/IPFIX field, identified by type and enterprise, to a destination."""

    pen_provided: bool = False
    type: int = 0
    pen: int = 0
    destination: str = ""
    endian: EndianType = EndianType.BIG


@dataclass
class IPFIXProducerConfig:
    mapping: list[NetFlowMapField] = field(default_factory=list)


@dataclass
class NetFlowV9ProducerConfig:
    mapping: list[NetFlowMapField] = field(default_factory=list)


@dataclass
class SFlowMapField:
    """Maps bits of a packet layer to a destination; offset and length are in bits."""

    layer: str = ""
    offset: int = 0
    length: int = 0
    destination: str = ""
    endian: EndianType = EndianType.BIG


@dataclass
class SFlowProducerConfig:
    mapping: list[SFlowMapField] = field(default_factory=list)


@dataclass
class ProtobufFormatterConfig:
    """An extra numbered field to be carried and rendered."""

    name: str = ""
    index: int = 0
    type: str = ""
    array: bool = False


@dataclass
class FormatterConfig:
    fields: list[str] = field(default_factory=list)
    key: list[str] = field(default_factory=list)
    render: dict[str, Union[RendererID, str]] = field(default_factory=dict)
    rename: dict[str, str] = field(default_factory=dict)
    protobuf: list[ProtobufFormatterConfig] = field(default_factory=list)


@dataclass
class ProducerConfig:
    formatter: FormatterConfig = field(default_factory=FormatterConfig)
    ipfix: IPFIXProducerConfig = field(default_factory=IPFIXProducerConfig)
    netflow_v9: NetFlowV9ProducerConfig = field(default_factory=NetFlowV9ProducerConfig)
    sflow: SFlowProducerConfig = field(default_factory=SFlowProducerConfig)


@dataclass
class DataMapLayer(MapConfigBase):
    """A mapping of bits at an offset within a packet layer."""

    offset: int = 0
    length: int = 0


@dataclass
class FormatterConfigMapper:
    """How flow messages are rendered and keyed."""

    fields: list[str] = field(default_factory=list)
    key: list[str] = field(default_factory=list)
    re_map: dict[str, str] = field(default_factory=dict)
    rename: dict[str, str] = field(default_factory=dict)
    render: dict[str, RenderFunc] = field(default_factory=dict)
    pb_map: dict[str, ProtobufFormatterConfig] = field(default_factory=dict)
    num_to_pb: dict[int, ProtobufFormatterConfig] = field(default_factory=dict)
    is_slice: dict[str, bool] = field(default_factory=dict)


@dataclass
class NetFlowMapper:
    """Lookup of custom mappings by (enterprise provided, enterprise, type)."""

    data: dict[tuple[bool, int, int], MapConfigBase] = field(default_factory=dict)

    def map(self, field: Any) -> Optional[MapConfigBase]:
        return self.data.get((bool(field.pen_provided), int(field.pen), int(field.type)))


@dataclass
class SFlowMapper:
    """Custom mappings grouped by packet layer."""

    data: dict[str, list[DataMapLayer]] = field(default_factory=dict)

    def layer(self, layer: str) -> list[DataMapLayer]:
        return self.data.get(layer, [])


@dataclass
class MappedConfig:
    formatter: Optional[FormatterConfigMapper] = None
    ipfix: Optional[NetFlowMapper] = None
    netflow_v9: Optional[NetFlowMapper] = None
    sflow: Optional[SFlowMapper] = None

    def _finalize_destination(self, target: MapConfigBase) -> None:
        assert self.formatter is not None
        pb_field = self.formatter.pb_map.get(target.destination)
        if pb_field is None:
            return
        target.proto_index = pb_field.index
        proto_type = PROTO_TYPE_MAP.get(pb_field.type)
        if proto_type is None:
            raise ValueError(f"could not map {pb_field.type} to a ProtoType")
        target.proto_type = proto_type
        target.proto_array = pb_field.array

    def _finalize(self) -> None:
        if self.formatter is None:
            return
        for mapper in (self.ipfix, self.netflow_v9):
            if mapper is not None:
                for target in mapper.data.values():
                    self._finalize_destination(target)
        if self.sflow is not None:
            for layers in self.sflow.data.values():
                for target in layers:
                    self._finalize_destination(target)


_DEFAULT_SLICES = ("bgp_communities", "as_path", "mpls_ip", "mpls_label", "mpls_ttl")


def _map_fields_netflow(fields: list[NetFlowMapField]) -> NetFlowMapper:
    return NetFlowMapper(
        {
            (bool(item.pen_provided), int(item.pen), int(item.type)): MapConfigBase(
                destination=item.destination, endianness=item.endian
            )
            for item in fields
        }
    )


def _map_fields_sflow(fields: list[SFlowMapField]) -> SFlowMapper:
    data: dict[str, list[DataMapLayer]] = {}
    for item in fields:
        data.setdefault(item.layer, []).append(
            DataMapLayer(
                destination=item.destination,
                endianness=item.endian,
                offset=item.offset,
                length=item.length,
            )
        )
    return SFlowMapper(data)


def _lookup_renderer(renderer_id: Union[RendererID, str]) -> RenderFunc:
    try:
        renderer = RENDERERS.get(RendererID(renderer_id))
    except ValueError:
        renderer = None
    if renderer is None:
        raise ValueError(f"field {getattr(renderer_id, 'value', renderer_id)} is not a renderer")
    return renderer


def map_format(cfg: Optional[ProducerConfig]) -> FormatterConfigMapper:
    """Build the formatter mapping; raises ValueError on an invalid configuration."""
    default_fields = list(FIELD_NAMES)
    mapper = FormatterConfigMapper(
        re_map={name: name for name in FIELD_NAMES},
        render=dict(DEFAULT_RENDERERS),
        is_slice={name: True for name in _DEFAULT_SLICES},
    )
    if cfg is None:
        mapper.fields = default_fields
        return mapper

    formatter_cfg = cfg.formatter
    for pb_field in formatter_cfg.protobuf:
        mapper.re_map[pb_field.name] = ""
        mapper.pb_map[pb_field.name] = pb_field
        mapper.num_to_pb[pb_field.index] = pb_field
        mapper.is_slice[pb_field.name] = pb_field.array

    mapper.rename.update(formatter_cfg.rename)

    for name in formatter_cfg.key:
        if name not in mapper.re_map:
            raise ValueError(f"key field {name} does not exist")
        mapper.key.append(name)

    for name, renderer_id in formatter_cfg.render.items():
        target = mapper.re_map.get(name) or name
        mapper.render[target] = _lookup_renderer(renderer_id)

    if not formatter_cfg.fields:
        mapper.fields = default_fields
    else:
        for name in formatter_cfg.fields:
            if name not in mapper.re_map and name not in mapper.render:
                raise ValueError(f"field {name} in config not found in protobuf")
        mapper.fields = list(formatter_cfg.fields)
    return mapper


def map_config(cfg: Optional[ProducerConfig]) -> MappedConfig:
    """Map a producer configuration; raises ValueError on an invalid one."""
    mapped = MappedConfig()
    if cfg is not None:
        mapped.ipfix = _map_fields_netflow(cfg.ipfix.mapping)
        mapped.netflow_v9 = _map_fields_netflow(cfg.netflow_v9.mapping)
        mapped.sflow = _map_fields_sflow(cfg.sflow.mapping)
    mapped.formatter = map_format(cfg)
    mapped._finalize()
    return mapped