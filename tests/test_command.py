import json

import pytest

from respawn import command
from respawn.command import CommandBuilder, CommandSpec, build, load_spec
from respawn.errors import ConfigurationError
from respawn.process import StreamMode


def test_placeholders_expand_in_place_and_empty_lists_are_elided():
    spec = CommandSpec(
        exe={"py": ["run", "${exe-args}", "${file}", "${file-args}"]},
        exe_args=[],
        file_args=["--verbose"],
        file="app.py",
    )

    assert build("app.py", spec) == ["run", "app.py", "--verbose"]


def test_string_mapping_is_split_into_tokens():
    spec = CommandSpec(exe={"py": "python3 -u"})

    assert build("main.py", spec) == ["python3", "-u"]


def test_repeated_whitespace_never_produces_empty_tokens():
    spec = CommandSpec(exe={"js": "  node   --trace-warnings\t"})

    assert build("index.js", spec) == ["node", "--trace-warnings"]


def test_missing_mapping_falls_back_to_runtime_template():
    spec = CommandSpec(exe={"js": "node"})

    assert build("main.py", spec) == ["deno", "run", "main.py"]
    assert build("main.py", spec, runtime="bun") == ["bun", "run", "main.py"]


def test_fallback_template_includes_extra_arguments():
    spec = CommandSpec(exe_args=["--allow-net", "--quiet"], file_args=["a", "b"])

    assert build("/srv/main.ts", spec) == [
        "deno",
        "run",
        "--allow-net",
        "--quiet",
        "/srv/main.ts",
        "a",
        "b",
    ]


def test_file_without_extension_uses_empty_key():
    spec = CommandSpec(exe={"": "sh ${file}"})

    assert build("scripts/Makefile", spec) == ["sh", "scripts/Makefile"]
    assert command.extension("scripts/Makefile") == ""
    assert command.extension("/home/user/.bashrc") == ""
    assert command.extension("archive.tar.gz") == "gz"


def test_file_defaults_to_target_when_not_configured():
    spec = CommandSpec(exe={"py": "python ${file}"})

    assert build("/tmp/job.py", spec) == ["python", "/tmp/job.py"]


def test_unknown_placeholders_and_partial_matches_pass_through():
    spec = CommandSpec(exe={"py": ["python", "${other}", "--file=${file}", "${file}"]})

    assert build("x.py", spec) == ["python", "${other}", "--file=${file}", "x.py"]


def test_empty_string_mapping_is_a_configuration_error():
    spec = CommandSpec(exe={"py": ""})

    with pytest.raises(ConfigurationError):
        build("main.py", spec)


def test_command_of_only_empty_placeholders_is_a_configuration_error():
    spec = CommandSpec(exe={"py": ["${exe-args}", "${file-args}"]})

    with pytest.raises(ConfigurationError):
        build("main.py", spec)


def test_build_is_deterministic_and_does_not_mutate_spec():
    spec = CommandSpec(
        exe={"py": ["python", "${exe-args}", "${file}"]},
        exe_args=["-X", "dev"],
    )

    first = build("main.py", spec)
    second = build("main.py", spec)

    assert first == second == ["python", "-X", "dev", "main.py"]
    assert first is not second
    assert spec.exe["py"] == ["python", "${exe-args}", "${file}"]


def test_command_builder_uses_its_runtime():
    builder = CommandBuilder(CommandSpec(), runtime="node")

    assert builder.build("server.js") == ["node", "run", "server.js"]


def test_load_spec_accepts_camel_case_keys(tmp_path):
    path = tmp_path / "respawn.json"
    path.write_text(
        json.dumps(
            {
                "exe": {"py": "python3 -u", "sh": ["bash", "${file}"]},
                "exeArgs": ["-q"],
                "fileArgs": ["--port", "8000"],
                "env": {"DEBUG": "1"},
                "stdout": "piped",
                "stderr": 2,
            }
        ),
        encoding="utf-8",
    )

    spec = load_spec(path)

    assert spec.exe == {"py": "python3 -u", "sh": ["bash", "${file}"]}
    assert spec.exe_args == ["-q"]
    assert spec.file_args == ["--port", "8000"]
    assert spec.env == {"DEBUG": "1"}
    assert spec.stdout == StreamMode.PIPED
    assert spec.stderr == 2
    assert spec.stdin == StreamMode.INHERIT


def test_load_spec_rejects_invalid_files(tmp_path):
    missing = tmp_path / "missing.json"
    malformed = tmp_path / "bad.json"
    malformed.write_text("{not json", encoding="utf-8")
    unknown = tmp_path / "unknown.json"
    unknown.write_text(json.dumps({"exe": {}, "watch": True}), encoding="utf-8")
    wrong_type = tmp_path / "wrong.json"
    wrong_type.write_text(json.dumps({"exe": {"py": 3}}), encoding="utf-8")

    for path in (missing, malformed, unknown, wrong_type):
        with pytest.raises(ConfigurationError):
            load_spec(path)
