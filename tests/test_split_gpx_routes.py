import logging

import gpxpy
import gpxpy.gpx
import pytest

from split_gpx_routes import (
    SplitConfig,
    list_gpx_files,
    main,
    parse_arguments,
    process_gpx_files,
    reset_output_directory,
    validate_arguments,
)


def write_route_gpx(path, num_points):
    gpx = gpxpy.gpx.GPX()
    gpx.name = path.stem
    route = gpxpy.gpx.GPXRoute(name=path.stem)
    for i in range(num_points):
        route.points.append(gpxpy.gpx.GPXRoutePoint(latitude=54.4 + i * 0.001, longitude=-3.1, elevation=200 + i))
    gpx.routes.append(route)
    path.write_text(gpx.to_xml(), encoding="utf-8")
    return path


def snapshot(directory):
    return {str(p.relative_to(directory)): p.read_bytes() for p in sorted(directory.rglob("*")) if p.is_file()}


@pytest.fixture
def input_dir(tmp_path):
    """Input directory with two routes, a broken file and a non-GPX file."""
    directory = tmp_path / "input"
    directory.mkdir()
    write_route_gpx(directory / "trip.gpx", 120)
    write_route_gpx(directory / "loop.gpx", 30)
    (directory / "broken.gpx").write_text("<gpx><rte>", encoding="utf-8")
    (directory / "notes.txt").write_text("not a route", encoding="utf-8")
    return directory


@pytest.fixture
def config(tmp_path, input_dir):
    return SplitConfig(input_dir=input_dir, output_dir=tmp_path / "output", points_per_file=50)


def test_list_gpx_files(input_dir):
    (input_dir / "nested").mkdir()
    write_route_gpx(input_dir / "nested" / "deep.gpx", 3)

    names = [p.name for p in list_gpx_files(input_dir)]
    assert names == ["broken.gpx", "loop.gpx", "trip.gpx"]


def test_list_gpx_files_missing_directory(tmp_path):
    assert list_gpx_files(tmp_path / "missing") == []


def test_process_gpx_files(config):
    summary = process_gpx_files(config)

    assert summary.files_found == 3
    assert summary.files_split == 2
    assert summary.files_written == 4
    assert summary.files_failed == 1
    assert str(config.input_dir / "broken.gpx") in summary.failures
    assert not summary.ok

    trip_dir = config.output_dir / "trip"
    assert sorted(p.name for p in trip_dir.iterdir()) == ["trip_split_1.gpx", "trip_split_2.gpx", "trip_split_3.gpx"]
    assert [p.name for p in (config.output_dir / "loop").iterdir()] == ["loop_split_1.gpx"]


def test_process_gpx_files_clears_previous_output(config):
    stale = config.output_dir / "old" / "old_split_1.gpx"
    stale.parent.mkdir(parents=True)
    stale.write_text("stale", encoding="utf-8")

    process_gpx_files(config)

    assert not stale.exists()


def test_process_gpx_files_no_clean_keeps_previous_output(config):
    stale = config.output_dir / "old" / "old_split_1.gpx"
    stale.parent.mkdir(parents=True)
    stale.write_text("stale", encoding="utf-8")
    config.clean = False

    process_gpx_files(config)

    assert stale.exists()
    assert (config.output_dir / "trip" / "trip_split_1.gpx").exists()


def test_process_gpx_files_is_idempotent(config):
    process_gpx_files(config)
    first = snapshot(config.output_dir)
    process_gpx_files(config)

    assert snapshot(config.output_dir) == first


def test_empty_input_directory(tmp_path, caplog):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    config = SplitConfig(input_dir=input_dir, output_dir=tmp_path / "output")

    with caplog.at_level(logging.INFO):
        summary = process_gpx_files(config)

    assert summary.files_found == 0
    assert summary.ok
    assert list((tmp_path / "output").iterdir()) == []
    assert "No GPX files found" in caplog.text


def test_missing_input_directory_does_not_clear_output(tmp_path):
    output_dir = tmp_path / "output"
    keep = output_dir / "keep.gpx"
    output_dir.mkdir()
    keep.write_text("previous run", encoding="utf-8")

    summary = process_gpx_files(SplitConfig(input_dir=tmp_path / "typo", output_dir=output_dir))

    assert summary.files_found == 0
    assert keep.exists()


def test_verify_option(config):
    config.verify = True
    summary = process_gpx_files(config)

    assert summary.files_split == 2
    assert summary.files_failed == 1


def test_reset_output_directory_creates_missing_directory(tmp_path):
    output_dir = tmp_path / "fresh" / "output"

    assert reset_output_directory(output_dir)
    assert output_dir.is_dir()


def test_reset_refuses_input_parent(tmp_path, input_dir):
    assert not reset_output_directory(tmp_path, input_dir)
    assert (input_dir / "trip.gpx").exists()


def test_reset_refuses_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    marker = tmp_path / "marker.txt"
    marker.write_text("keep", encoding="utf-8")

    assert not reset_output_directory(".")
    assert marker.exists()


def test_failed_reset_still_processes_files(config, monkeypatch):
    import split_gpx_routes as module

    def fail_rmtree(path):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(module.shutil, "rmtree", fail_rmtree)
    summary = process_gpx_files(config)

    assert summary.reset_failed
    assert summary.files_split == 2
    assert (config.output_dir / "trip" / "trip_split_3.gpx").exists()


def test_parse_arguments_defaults(monkeypatch):
    for name in ("GPX_SPLIT_INPUT_DIR", "GPX_SPLIT_OUTPUT_DIR", "GPX_SPLIT_POINTS_PER_FILE"):
        monkeypatch.delenv(name, raising=False)

    config = validate_arguments(parse_arguments([]))

    assert str(config.input_dir) == "input"
    assert str(config.output_dir) == "output"
    assert config.points_per_file == 50
    assert config.clean and not config.pretty and not config.strict and not config.verify


def test_parse_arguments_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("GPX_SPLIT_INPUT_DIR", str(tmp_path / "routes"))
    monkeypatch.setenv("GPX_SPLIT_POINTS_PER_FILE", "250")

    config = validate_arguments(parse_arguments([]))
    assert config.input_dir == tmp_path / "routes"
    assert config.points_per_file == 250

    config = validate_arguments(parse_arguments(["--points-per-file", "10", "--pretty", "--no-clean"]))
    assert config.points_per_file == 10
    assert config.pretty
    assert not config.clean


@pytest.mark.parametrize("value", ["0", "-5", "many"])
def test_invalid_points_per_file_exits(value):
    with pytest.raises(SystemExit) as exc_info:
        validate_arguments(parse_arguments(["--points-per-file", value]))
    assert exc_info.value.code == 1


def test_main_best_effort_and_strict(tmp_path, input_dir):
    args = ["--input-dir", str(input_dir), "--output-dir", str(tmp_path / "output")]

    assert main(args) == 0
    assert main(args + ["--strict"]) == 1


def test_main_strict_succeeds_without_failures(tmp_path, input_dir):
    (input_dir / "broken.gpx").unlink()
    args = ["--input-dir", str(input_dir), "--output-dir", str(tmp_path / "output"),
            "--points-per-file", "25", "--strict", "--verify"]

    assert main(args) == 0
    assert len(list((tmp_path / "output" / "trip").iterdir())) == 5


def test_uppercase_extension_is_not_split(config):
    """Only *.gpx is matched, so 'a.GPX' and 'a.gpx' can never share the output folder 'a'."""
    write_route_gpx(config.input_dir / "hike.GPX", 3)

    assert [p.name for p in list_gpx_files(config.input_dir)] == ["broken.gpx", "loop.gpx", "trip.gpx"]

    summary = process_gpx_files(config)

    assert summary.files_found == 3
    assert not (config.output_dir / "hike").exists()


def test_write_failure_does_not_stop_other_files(config):
    config.clean = False
    config.output_dir.mkdir()
    (config.output_dir / "trip").write_text("in the way", encoding="utf-8")

    summary = process_gpx_files(config)

    assert str(config.input_dir / "trip.gpx") in summary.failures
    assert summary.files_split == 1
    assert (config.output_dir / "loop" / "loop_split_1.gpx").exists()
