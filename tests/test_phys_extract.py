from __future__ import annotations

from pathlib import Path

import phys_extract
from phys_fixtures import TRIANGLE_RING, TRIANGLE_VERTS, hull_block, mesh_block, phys_text


def solid_text() -> str:
    return phys_text(
        groups=["default"],
        hulls=[hull_block(0, TRIANGLE_VERTS, [0], TRIANGLE_RING)],
        meshes=[mesh_block(0, TRIANGLE_VERTS, [0, 1, 2])],
    )


def test_batch_converts_each_file_and_isolates_failures(tmp_path: Path, capsys):
    src = tmp_path / "dumps"
    src.mkdir()
    (src / "de_alpha.vphys").write_text(solid_text(), encoding="utf-8")
    (src / "de_beta.vphys").write_text(solid_text(), encoding="utf-8")
    (src / "de_broken.vphys").write_bytes(b"{ a = \xff\xfe }")
    out = tmp_path / "out"

    rc = phys_extract.main(["--input-dir", str(src), "--output-dir", str(out), "--format", "tri"])

    assert rc == 1
    assert (out / "tri" / "de_alpha.tri").stat().st_size == 36 * 3
    assert (out / "tri" / "de_beta.tri").stat().st_size == 36 * 3
    assert not (out / "vphys").exists()
    captured = capsys.readouterr()
    assert "de_broken.vphys" in captured.err
    assert "files=3 converted=2 failed=1 tri=2 vphys=0" in captured.out


def test_batch_writes_vphys_copies(tmp_path: Path):
    src = tmp_path / "dumps"
    (src / "nested").mkdir(parents=True)
    (src / "nested" / "de_gamma.vphys").write_text(solid_text(), encoding="utf-8")
    out = tmp_path / "out"

    assert phys_extract.main(["--input-dir", str(src), "--output-dir", str(out), "--recursive"]) == 0
    assert (out / "vphys" / "de_gamma.vphys").read_text(encoding="utf-8") == solid_text()
    assert (out / "tri" / "de_gamma.tri").is_file()


def test_batch_non_recursive_ignores_subdirectories(tmp_path: Path, capsys):
    src = tmp_path / "dumps"
    (src / "nested").mkdir(parents=True)
    (src / "nested" / "de_gamma.vphys").write_text(solid_text(), encoding="utf-8")

    assert phys_extract.main(["--input-dir", str(src), "--output-dir", str(tmp_path / "out")]) == 0
    assert "files=0" in capsys.readouterr().out


def test_batch_custom_pattern(tmp_path: Path):
    src = tmp_path / "dumps"
    src.mkdir()
    (src / "cs_office.txt").write_text(solid_text(), encoding="utf-8")
    (src / "notes.md").write_text("not a dump", encoding="utf-8")
    out = tmp_path / "out"

    argv = ["--input-dir", str(src), "--output-dir", str(out), "--pattern", "*.txt", "--format", "tri"]
    assert phys_extract.main(argv) == 0
    assert sorted(p.name for p in (out / "tri").iterdir()) == ["cs_office.tri"]


def test_batch_missing_input_dir(tmp_path: Path, capsys):
    assert phys_extract.main(["--input-dir", str(tmp_path / "missing")]) == 1
    assert "[error] Input directory not found" in capsys.readouterr().err


def test_batch_rejects_second_file_with_same_output_name(tmp_path: Path, capsys):
    src = tmp_path / "dumps"
    (src / "a").mkdir(parents=True)
    (src / "b").mkdir()
    (src / "a" / "de_x.vphys").write_text(
        phys_text(hulls=[hull_block(0, TRIANGLE_VERTS, [0], TRIANGLE_RING)]), encoding="utf-8"
    )
    (src / "b" / "de_x.vphys").write_text(
        phys_text(meshes=[mesh_block(0, TRIANGLE_VERTS, [0, 1, 2])]), encoding="utf-8"
    )
    out = tmp_path / "out"

    argv = ["--input-dir", str(src), "--output-dir", str(out), "--recursive", "--format", "tri"]
    assert phys_extract.main(argv) == 1

    # The first file keeps its output; the second is reported, not written over it.
    assert (out / "tri" / "de_x.tri").stat().st_size == 36 * 2
    captured = capsys.readouterr()
    assert "output name 'de_x' already used by" in captured.err
    assert "files=2 converted=1 failed=1 tri=1" in captured.out


def test_batch_skips_previous_outputs_inside_input_tree(tmp_path: Path, capsys):
    src = tmp_path / "dumps"
    src.mkdir()
    (src / "de_alpha.vphys").write_text(solid_text(), encoding="utf-8")
    out = src / "out"
    argv = ["--input-dir", str(src), "--output-dir", str(out), "--recursive"]

    assert phys_extract.main(argv) == 0
    assert (out / "vphys" / "de_alpha.vphys").is_file()
    capsys.readouterr()

    assert phys_extract.main(argv) == 0
    assert "files=1 converted=1 failed=0" in capsys.readouterr().out
