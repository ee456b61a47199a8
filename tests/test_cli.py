# Tests for the tryon-score command line tool

import json
from pathlib import Path

import pytest
from PIL import Image

from tryon_engine.cli import main, score_files
from tryon_engine.state import Recommendation


def _image(path: Path, color: tuple[int, int, int]) -> Path:
    Image.new("RGB", (20, 20), color).save(path, format="PNG")
    return path


@pytest.fixture
def red_pair(tmp_path: Path) -> tuple[Path, Path]:
    return _image(tmp_path / "garment.png", (200, 50, 50)), _image(tmp_path / "result.png", (200, 50, 50))


class TestScoreFiles:
    def test_identical_files_accept(self, red_pair):
        report = score_files(*red_pair)
        assert report.overall_score == 100
        assert report.recommendation == Recommendation.ACCEPT


class TestMain:
    def test_accept_exits_zero(self, red_pair, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([str(red_pair[0]), str(red_pair[1])])
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "Recommendation: ACCEPT" in out
        assert "100/100" in out

    def test_json_output(self, red_pair, capsys):
        with pytest.raises(SystemExit):
            main([str(red_pair[0]), str(red_pair[1]), "--json"])
        report = json.loads(capsys.readouterr().out)
        assert report["recommendation"] == "ACCEPT"
        assert report["person_consistency"] is None

    def test_reject_exits_one(self, tmp_path, capsys):
        garment = _image(tmp_path / "g.png", (0, 0, 0))
        result = _image(tmp_path / "r.png", (255, 255, 255))
        with pytest.raises(SystemExit) as exc_info:
            main([str(garment), str(result)])
        assert exc_info.value.code == 1
        assert "COLOR_SHIFT" in capsys.readouterr().out

    def test_missing_file_exits_two(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_path / "nope.png"), str(tmp_path / "nope2.png")])
        assert exc_info.value.code == 2
        assert "does not exist" in capsys.readouterr().err

    def test_undecodable_file_exits_two(self, tmp_path, red_pair):
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"garbage")
        with pytest.raises(SystemExit) as exc_info:
            main([str(red_pair[0]), str(broken)])
        assert exc_info.value.code == 2

    def test_sample_pixels_must_be_positive(self, red_pair):
        with pytest.raises(SystemExit) as exc_info:
            main([str(red_pair[0]), str(red_pair[1]), "--sample-pixels", "0"])
        assert exc_info.value.code == 2
