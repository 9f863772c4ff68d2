"""Pipeline configuration: plain values threaded through every stage."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from rastercam.errors import InvalidInputError
from rastercam.rasterize import FilterMode, check_step
from rastercam.spatial import DEFAULT_CELL_SIZE

# named sampling resolutions (mm)
STEP_LEVELS = {
    'coarse': 0.5,
    'medium': 0.25,
    'fine': 0.1,
    'very-fine': 0.05,
}

# camelCase names used by saved UI settings
_KEY_ALIASES = {
    'stepSize': 'step_size',
    'step': 'step_size',
    'xStep': 'x_stride',
    'yStep': 'y_stride',
    'zFloor': 'floor_z',
    'oobZ': 'floor_z',
    'terrainFilter': 'terrain_filter',
    'toolFilter': 'tool_filter',
    'cellSize': 'cell_size',
}


def resolve_step(value: Union[str, float, int]) -> float:
    """Turn a level name (``'fine'``) or a number into a positive step size."""
    if isinstance(value, str):
        key = value.strip().lower().replace('_', '-')
        if key in STEP_LEVELS:
            return STEP_LEVELS[key]
    return check_step(value)


@dataclass
class PipelineConfig:
    """Settings for one terrain/tool milling run.

    Attributes:
        step_size: Grid step shared by terrain, tool and toolpath (mm)
        x_stride: Toolpath sample spacing along X, in raster cells
        y_stride: Toolpath sample spacing along Y, in raster cells
        floor_z: Terrain height assumed where the terrain has no coverage
        terrain_filter: Face filter for the terrain mesh
        tool_filter: Face filter for the tool mesh
        cell_size: Target spatial-grid cell size (mm)
        workers: Thread count for rasterization and toolpath scanlines
    """
    step_size: float = STEP_LEVELS['fine']
    x_stride: int = 1
    y_stride: int = 1
    floor_z: float = 0.0
    terrain_filter: FilterMode = FilterMode.UPWARD_FACING
    tool_filter: FilterMode = FilterMode.DOWNWARD_FACING
    cell_size: float = DEFAULT_CELL_SIZE
    workers: int = 1

    def __post_init__(self):
        self.step_size = resolve_step(self.step_size)
        for name in ('x_stride', 'y_stride', 'workers'):
            value = getattr(self, name)
            if isinstance(value, bool):
                raise InvalidInputError(f'{name} must be a positive integer, got {value!r}')
            try:
                ivalue = int(value)
            except (TypeError, ValueError) as exc:
                raise InvalidInputError(f'{name} must be a positive integer, got {value!r}') from exc
            if ivalue != value or ivalue < 1:
                raise InvalidInputError(f'{name} must be a positive integer, got {value!r}')
            setattr(self, name, ivalue)
        try:
            self.floor_z = float(self.floor_z)
            self.cell_size = float(self.cell_size)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f'bad numeric setting: {exc}') from exc
        if not self.cell_size > 0.0:
            raise InvalidInputError(f'cell_size must be positive, got {self.cell_size}')
        self.terrain_filter = FilterMode.coerce(self.terrain_filter)
        self.tool_filter = FilterMode.coerce(self.tool_filter)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build from a dict, accepting snake_case or the UI's camelCase keys."""
        if not isinstance(data, Mapping):
            raise InvalidInputError(f'configuration must be a mapping, got {type(data)!r}')
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        unknown = []
        for key, value in data.items():
            name = _KEY_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                unknown.append(key)
        if unknown:
            raise InvalidInputError(
                f'unknown configuration keys: {", ".join(sorted(map(str, unknown)))}')
        return cls(**kwargs)

    def replace(self, **changes) -> "PipelineConfig":
        """Copy with some settings changed; ``None`` values are ignored."""
        data = self.to_dict()
        data.update({k: v for k, v in changes.items() if v is not None})
        return PipelineConfig.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['terrain_filter'] = self.terrain_filter.value
        data['tool_filter'] = self.tool_filter.value
        return data


def load_config(path: Union[Path, str]) -> PipelineConfig:
    """Load a YAML pipeline configuration file."""

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f'configuration file not found: {cfg_path}')
    import yaml

    with cfg_path.open('r', encoding='utf-8') as fp:
        try:
            data = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise InvalidInputError(f'cannot parse {cfg_path}: {exc}') from exc
    return PipelineConfig.from_mapping(data)


__all__ = [
    'STEP_LEVELS',
    'PipelineConfig',
    'resolve_step',
    'load_config',
]
