from pathlib import Path

import pytest
import yaml

from fonts import SquareRenderer, build_cff_font, build_collection, build_font, load_glyph_data
from rubyfont.config import Config, RubyConfig
from rubyfont.sfnt import load

ROOT = Path(__file__).resolve().parent.parent

FOREIGN_FEATURES = """
languagesystem DFLT dflt;
feature liga {
    sub A acute by Aacute;
} liga;
"""

DECOMPOSITION_FEATURES = """
languagesystem DFLT dflt;
languagesystem latn dflt;
languagesystem latn TRK;
feature ccmp {
    sub Aacute by A acute;
} ccmp;
feature locl {
    script latn;
    language TRK;
    sub A by A acute;
} locl;
"""


@pytest.fixture(scope="session")
def glyph_data():
    return load_glyph_data()


@pytest.fixture(scope="session")
def font_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("fonts")


@pytest.fixture(scope="session")
def base_font_path(glyph_data, font_dir):
    return build_font(glyph_data["base"], font_dir / "RubyTestBase.ttf")


@pytest.fixture(scope="session")
def ruby_font_path(glyph_data, font_dir):
    return build_font(glyph_data["ruby"], font_dir / "RubyTestLetters.ttf")


@pytest.fixture(scope="session")
def gsub_font_path(glyph_data, font_dir):
    return build_font(glyph_data["base"], font_dir / "RubyTestLiga.ttf", features=FOREIGN_FEATURES)


@pytest.fixture(scope="session")
def ccmp_font_path(glyph_data, font_dir):
    return build_font(glyph_data["base"], font_dir / "RubyTestCcmp.ttf", features=DECOMPOSITION_FEATURES)


@pytest.fixture(scope="session")
def cff_font_path(glyph_data, font_dir):
    return build_cff_font(glyph_data["base"], font_dir / "RubyTestBase.otf")


@pytest.fixture(scope="session")
def collection_path(base_font_path, gsub_font_path, font_dir):
    return build_collection([base_font_path, gsub_font_path], font_dir / "RubyTest.ttc")


@pytest.fixture(scope="session")
def readings_path(glyph_data, font_dir):
    path = font_dir / "readings.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(glyph_data["readings"], f, allow_unicode=True)
    return path


@pytest.fixture
def base_font(base_font_path):
    return load(base_font_path.read_bytes())


@pytest.fixture
def square_renderer():
    return SquareRenderer()


@pytest.fixture
def ruby_config():
    return RubyConfig(kind="table")


@pytest.fixture
def config(tmp_path, ruby_font_path, readings_path):
    config = Config()
    config.ruby.kind = "table"
    config.ruby.font = ruby_font_path
    config.ruby.readings = readings_path
    config.output.directory = tmp_path / "out"
    return config
