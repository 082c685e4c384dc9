from fastapi.testclient import TestClient

from config import DATA_DIR, DEFAULT_HOST
from conftest import make_exam
from main import build_app, parse_args
from study_exam_cbt.services.storage import JsonExamRepository


def test_parse_args_defaults():
    args = parse_args([])
    assert args.data_dir == DATA_DIR
    assert args.host == DEFAULT_HOST
    assert args.no_browser is False


def test_parse_args_overrides(tmp_path):
    args = parse_args(["--data-dir", str(tmp_path), "--port", "0", "--no-browser", "--log-file", ""])
    assert args.data_dir == str(tmp_path)
    assert args.port == 0
    assert args.no_browser is True
    assert args.log_file == ""


def test_build_app_serves_given_data_dir(tmp_path):
    data_dir = str(tmp_path / "data")
    JsonExamRepository(data_dir).upsert_exam(make_exam("from-dir"))

    with TestClient(build_app(data_dir)) as client:
        ids = [e["id"] for e in client.get("/api/exams").json()["exams"]]

    assert ids == ["from-dir"]
