"""
Per-file pipeline and batch runner.

Each font goes through injection, rebuild and the optional subset in memory;
output files are only written once every member of the input succeeded.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from .collection import split_collection
from .config import Config
from .edit import FontEdit
from .encoder import compress_woff2, encode_collection, encode_font, write_outputs
from .injector import AnnotationInjector
from .rebuild import rebuild
from .renderers import create_renderer
from .sfnt import Collection, Font, load
from .subset import SubsetSpec, subset_font

logger = logging.getLogger(__name__)

# Renderer of the current process, created once per worker.
_renderer = None


def _get_renderer(config: Config):
    global _renderer
    if _renderer is None:
        _renderer = create_renderer(config.ruby)
    return _renderer


def _init_worker(config: Config):
    global _renderer
    _renderer = None
    _get_renderer(config)


@dataclass
class FileResult:
    source: Path
    outputs: list = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def required_codepoints(renderer, config: Config) -> frozenset:
    return frozenset(renderer.codepoints()) | frozenset(config.subset.extra_codepoints())


def process_font(font: Font, renderer, config: Config) -> Font:
    """Annotate (and optionally subset) one font in place."""
    edit = FontEdit(font)
    requests = renderer.requests(edit.cmap.mapping)
    AnnotationInjector(edit, renderer, config.ruby).inject(requests)
    rebuild(edit)

    if config.subset.enabled:
        spec = SubsetSpec(required_codepoints(renderer, config), config.subset.composite_closure)
        subset_font(font, spec)
    return font


def _font_suffix(font: Font, fmt: str) -> str:
    if fmt == "woff2":
        return ".woff2"
    return ".otf" if font.sfnt_version == b"OTTO" else ".ttf"


def _encode(font: Font, fmt: str) -> bytes:
    data = encode_font(font)
    return compress_woff2(data) if fmt == "woff2" else data


def process_file(path, config: Config, renderer=None) -> list:
    """Process one input file and return the paths written."""
    path = Path(path)
    renderer = renderer or _get_renderer(config)
    out_dir = Path(config.output.directory)
    fmt = config.output.format
    parsed = load(path.read_bytes())

    outputs = []
    if isinstance(parsed, Collection):
        split = config.output.split
        if fmt == "woff2" and not split:
            logger.warning("%s: WOFF2 cannot hold a collection; splitting it", path.name)
            split = True
        if split:
            for index, member in enumerate(split_collection(parsed)):
                logger.debug("%s: processing member %d", path.name, index)
                process_font(member, renderer, config)
                name = f"{path.stem}-{index}{_font_suffix(member, fmt)}"
                outputs.append((out_dir / name, _encode(member, fmt)))
        else:
            for member in parsed:
                process_font(member, renderer, config)
            outputs.append((out_dir / f"{path.stem}.ttc", encode_collection(list(parsed))))
    else:
        process_font(parsed, renderer, config)
        outputs.append((out_dir / f"{path.stem}{_font_suffix(parsed, fmt)}", _encode(parsed, fmt)))

    written = write_outputs(outputs)
    for output in written:
        logger.debug("Wrote %s", output)
    return written


def _run_one(path, config: Config, renderer=None) -> FileResult:
    try:
        return FileResult(Path(path), process_file(path, config, renderer))
    except Exception as exc:
        logger.error("%s: %s", path, exc)
        logger.debug("Traceback for %s", path, exc_info=True)
        return FileResult(Path(path), error=f"{type(exc).__name__}: {exc}")


def process_batch(paths, config: Config, jobs: int = None) -> list:
    """Process every path; one file failing never stops the others.

    Results come back in input order. With more than one job, files are spread
    over a process pool, each worker building its own renderer.
    """
    paths = [Path(p) for p in paths]
    jobs = jobs or config.jobs
    # Fail fast on a bad ruby configuration before any worker starts.
    renderer = create_renderer(config.ruby)

    if jobs <= 1 or len(paths) <= 1:
        return [_run_one(path, config, renderer) for path in paths]

    results = {}
    with ProcessPoolExecutor(max_workers=jobs, initializer=_init_worker, initargs=(config,)) as pool:
        futures = {pool.submit(_run_one, path, config): i for i, path in enumerate(paths)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                results[index] = future.result()
            except Exception as exc:
                logger.error("%s: worker failed: %s", paths[index], exc)
                results[index] = FileResult(paths[index], error=f"{type(exc).__name__}: {exc}")
    return [results[i] for i in range(len(paths))]
