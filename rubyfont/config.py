"""
Configuration loading.

A YAML file with optional `ruby`, `subset` and `output` sections plus `jobs`:

    ruby:
      kind: pinyin
      font: fonts/RubySans.ttf
      position: top
      scale: 0.4
    subset:
      enabled: true
      text: "中文"
      ranges: ["U+0020-U+007E"]
    output:
      format: woff2
      split: true
    jobs: 4
"""

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from .errors import ConfigError
from .injector import Position, SideAdvance, Strategy
from .tables.gsub import DEFAULT_FEATURE

RUBY_KINDS = ("pinyin", "romaji", "table")
OUTPUT_FORMATS = ("ttf", "woff2")


@dataclass
class RubyConfig:
    kind: str = "pinyin"
    font: Path | None = None
    readings: Path | None = None
    position: Position = Position.TOP
    scale: float = 0.4
    gutter: float = 0.05
    spacing: float = 0.0
    baseline_offset: float = 0.0
    tight: bool = False
    strategy: Strategy = Strategy.COMPOSITE
    side_advance: SideAdvance = SideAdvance.KEEP
    feature: str = DEFAULT_FEATURE


@dataclass
class SubsetConfig:
    enabled: bool = False
    text: str = ""
    ranges: list = field(default_factory=list)
    composite_closure: bool = True

    def extra_codepoints(self) -> set:
        codepoints = {ord(char) for char in self.text}
        for start, end in (parse_range(r) for r in self.ranges):
            codepoints.update(range(start, end + 1))
        return codepoints


@dataclass
class OutputConfig:
    directory: Path = Path("out")
    format: str = "ttf"
    split: bool = False


@dataclass
class Config:
    ruby: RubyConfig = field(default_factory=RubyConfig)
    subset: SubsetConfig = field(default_factory=SubsetConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    jobs: int = 1


def parse_codepoint(text) -> int:
    if isinstance(text, int):
        return text
    text = str(text).strip()
    if text.upper().startswith("U+"):
        text = text[2:]
    try:
        return int(text, 16)
    except ValueError:
        raise ConfigError(f"Invalid codepoint {text!r}") from None


def parse_range(value) -> tuple:
    """Accept "U+4E00-U+9FFF", "U+4E2D" or a [start, end] pair."""
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise ConfigError(f"Codepoint range {value!r} must have two ends")
        start, end = (parse_codepoint(v) for v in value)
    elif isinstance(value, str) and "-" in value:
        first, last = value.split("-", 1)
        start, end = parse_codepoint(first), parse_codepoint(last)
    else:
        start = end = parse_codepoint(value)
    if start > end:
        raise ConfigError(f"Codepoint range {value!r} is reversed")
    return start, end


def _build(cls, data, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    values = {}
    for name, value in data.items():
        converter = _CONVERTERS.get((cls, name))
        try:
            values[name] = converter(value) if converter and value is not None else value
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {section}.{name}: {value!r}") from exc
    return cls(**values)


def _choice(options):
    def convert(value):
        if value not in options:
            raise ValueError(value)
        return value

    return convert


_CONVERTERS = {
    (RubyConfig, "kind"): _choice(RUBY_KINDS),
    (RubyConfig, "font"): Path,
    (RubyConfig, "readings"): Path,
    (RubyConfig, "position"): Position,
    (RubyConfig, "strategy"): Strategy,
    (RubyConfig, "side_advance"): SideAdvance,
    (RubyConfig, "scale"): float,
    (RubyConfig, "gutter"): float,
    (RubyConfig, "spacing"): float,
    (RubyConfig, "baseline_offset"): float,
    (RubyConfig, "tight"): bool,
    (SubsetConfig, "enabled"): bool,
    (SubsetConfig, "text"): str,
    (SubsetConfig, "ranges"): lambda v: [v] if isinstance(v, str) else list(v),
    (SubsetConfig, "composite_closure"): bool,
    (OutputConfig, "directory"): Path,
    (OutputConfig, "format"): _choice(OUTPUT_FORMATS),
    (OutputConfig, "split"): bool,
}


def config_from_dict(data: dict, base_dir: Path = None) -> Config:
    data = dict(data or {})
    sections = {"ruby": RubyConfig, "subset": SubsetConfig, "output": OutputConfig}
    unknown = sorted(set(data) - set(sections) - {"jobs"})
    if unknown:
        raise ConfigError(f"Unknown configuration section(s): {', '.join(unknown)}")

    config = Config(**{name: _build(cls, data.get(name), name) for name, cls in sections.items()})
    jobs = data.get("jobs", 1)
    if not isinstance(jobs, int) or jobs < 1:
        raise ConfigError(f"jobs must be a positive integer, got {jobs!r}")
    config.jobs = jobs

    if not 0 < config.ruby.scale <= 1:
        raise ConfigError(f"ruby.scale must be in (0, 1], got {config.ruby.scale}")
    for r in config.subset.ranges:
        parse_range(r)

    # Relative paths in a config file are relative to that file.
    if base_dir is not None:
        for section, name in (("ruby", "font"), ("ruby", "readings"), ("output", "directory")):
            obj = getattr(config, section)
            value = getattr(obj, name)
            if name in (data.get(section) or {}) and value is not None and not value.is_absolute():
                setattr(obj, name, base_dir / value)
    return config


def load_config(path) -> Config:
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a mapping")
    return config_from_dict(data, path.parent)
