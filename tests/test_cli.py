"""Tests for the CLI module."""

import asyncio
import json
from pathlib import Path

import pytest

from plantree.cli import _check_config_toml, main

from .helpers import build_sample_plan, make_store


@pytest.fixture
def seeded(tmp_path: Path):
	"""A database file holding the sample plan."""

	async def seed():
		store = await make_store(tmp_path)
		return await build_sample_plan(store)

	sample = asyncio.run(seed())
	return str(tmp_path / "plantree.db"), sample


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch):
	monkeypatch.setenv("PLANTREE_CONFIG_DIR", str(tmp_path / "config"))
	monkeypatch.setenv("PLANTREE_DATA_DIR", str(tmp_path / "data"))
	return tmp_path


class TestParser:
	def test_no_command_prints_help(self, capsys):
		with pytest.raises(SystemExit) as exc_info:
			main([])
		assert exc_info.value.code == 1
		assert "usage: plantree" in capsys.readouterr().out

	@pytest.mark.parametrize("command", ["serve", "check", "show", "resolve", "blast-radius"])
	def test_subcommand_help(self, command, capsys):
		with pytest.raises(SystemExit) as exc_info:
			main([command, "--help"])
		assert exc_info.value.code == 0
		assert command in capsys.readouterr().out

	def test_version(self, capsys):
		with pytest.raises(SystemExit) as exc_info:
			main(["--version"])
		assert exc_info.value.code == 0
		assert capsys.readouterr().out.startswith("plantree ")


class TestShow:
	def test_show_json(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "show", str(sample.plan.id), "--json"])

		data = json.loads(capsys.readouterr().out)
		assert data["tree"]["name"] == "Release"
		assert data["stats"]["total"] == 11

	def test_show_rich(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "show", str(sample.plan.id)])

		out = capsys.readouterr().out
		assert "Release" in out
		assert "Compile" in out

	def test_show_missing_plan(self, seeded, capsys):
		db, _ = seeded
		with pytest.raises(SystemExit) as exc_info:
			main(["--db", db, "show", "404"])
		assert exc_info.value.code == 1
		assert "Plan not found" in capsys.readouterr().err


class TestResolve:
	def test_resolve_json(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "resolve", str(sample.compile.id), "--json"])

		data = json.loads(capsys.readouterr().out)
		ids = [n["id"] for n in data["dependencies"]]
		assert sample.build_context.id in ids
		assert sample.plan_context.id in ids

	def test_resolve_missing_node(self, seeded, capsys):
		db, _ = seeded
		with pytest.raises(SystemExit) as exc_info:
			main(["--db", db, "resolve", "404"])
		assert exc_info.value.code == 1


class TestBlastRadius:
	def test_execution_graph(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "blast-radius", str(sample.plan.id), str(sample.build.id), "--json"])

		data = json.loads(capsys.readouterr().out)
		assert sample.deploy.id in data["upstream"]
		assert sample.build.id in data["affected"]

	def test_containment(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "blast-radius", str(sample.plan.id), str(sample.compile.id), "--containment"])

		data = json.loads(capsys.readouterr().out)
		assert data["upstream"] == [sample.plan.id, sample.build.id]
		assert data["downstream"] == [sample.binary_io.id]

	def test_panel_output(self, seeded, capsys):
		db, sample = seeded
		main(["--db", db, "blast-radius", str(sample.plan.id), str(sample.build.id)])
		assert "Blast radius" in capsys.readouterr().out


class TestCheck:
	def test_check_clean(self, isolated_env, capsys):
		main(["check"])
		out = capsys.readouterr().out
		assert "No issues found." in out
		assert "not found (optional)" in out

	def test_check_invalid_toml(self, isolated_env, capsys):
		config_dir = isolated_env / "config"
		config_dir.mkdir()
		(config_dir / "config.toml").write_text("log_level = \n")

		with pytest.raises(SystemExit) as exc_info:
			main(["check"])

		assert exc_info.value.code == 1
		assert "config.toml parse error" in capsys.readouterr().out

	def test_check_config_toml_valid(self, tmp_path):
		(tmp_path / "config.toml").write_text('log_level = "DEBUG"\n')
		assert _check_config_toml(tmp_path) == ("valid", None)


class TestServe:
	def test_serve_uses_db_flag(self, isolated_env, monkeypatch):
		from plantree import server
		from plantree.nodes import store as store_module

		monkeypatch.setattr(store_module, "_store", None)
		monkeypatch.setattr(server.mcp, "run", lambda: None)
		db = isolated_env / "custom.db"

		main(["--db", str(db), "serve"])

		assert store_module._store.db_path == db
		assert db.exists()

	def test_serve_without_db_leaves_store_lazy(self, isolated_env, monkeypatch):
		from plantree import server
		from plantree.nodes import store as store_module

		monkeypatch.setattr(store_module, "_store", None)
		monkeypatch.setattr(server.mcp, "run", lambda: None)

		main(["serve"])

		assert store_module._store is None
