import pytest

from claudepod.core.canonical import digest
from claudepod.core.profiles import (
    DEFAULT_PROFILE_NAME,
    DEFAULT_PROFILE_TOML,
    ProfileStore,
    default_profile,
)
from claudepod.errors import ConfigError, ProfileNotFoundError
from claudepod.models.profile import CLAUDE_INSTALL, CommandDefinition, CommandTable, Profile


def test_empty_document_gets_defaults():
    profile = Profile.from_toml("")

    assert profile.container.base_image == "ubuntu:25.04"
    assert profile.container.work_dir == "$PWD"
    assert profile.runtime.container_runtime == "podman"
    assert profile.cmd.default == "claude"
    assert sorted(profile.cmd.commands) == ["bash", "claude", "shell", "zsh"]
    assert profile.cmd["claude"].install == CLAUDE_INSTALL
    assert profile.cmd["shell"].is_alias


def test_default_profile_text_matches_builtin_commands():
    profile = default_profile()
    assert profile.cmd == Profile().cmd
    assert "fd-find" in profile.dependencies.apt
    assert profile.shell.aliases == {"n": "ninja"}
    assert [v.host for v in profile.runtime.volumes][0] == "$PWD"


def test_cmd_table_round_trips_flat(profile):
    dumped = profile.model_dump(mode="json")
    assert dumped["cmd"]["default"] == "claude"
    assert dumped["cmd"]["shell"]["command"] == "bash"
    assert "commands" not in dumped["cmd"]
    assert Profile.from_mapping(dumped) == profile


def test_cmd_with_only_default_keeps_builtins():
    profile = Profile.from_toml('[cmd]\ndefault = "zsh"\n')
    assert profile.cmd.default == "zsh"
    assert "claude" in profile.cmd


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("[container]\nbogus = 1\n", "container.bogus"),
        ('[runtime]\ncontainer_runtime = "lxc"\n', "container_runtime"),
        ('[dependencies.nodejs]\nsource = "brew"\n', "invalid nodejs source"),
        ('[container]\nbase_image = ""\n', "base_image"),
        ('[cmd]\ndefault = "missing"\n[cmd.bash]\n', "default command does not resolve"),
        ('[cmd]\ndefault = "a"\n[cmd.a]\ncommand = "b"\n[cmd.b]\ncommand = "a"\n', "points back"),
        ('[cmd]\ndefault = "a"\n[cmd.a]\ncommand = "b"\nargs = "-x"\n[cmd.b]\n', "cannot also set"),
        ('[[runtime.volumes]]\nhost = ""\ncontainer = "/x"\n', "volume mount paths"),
        ("unknown_section = 1\n", "unknown_section"),
    ],
)
def test_invalid_profiles_raise_config_error(text, fragment):
    with pytest.raises(ConfigError) as excinfo:
        Profile.from_toml(text)
    assert fragment in str(excinfo.value)


def test_command_table_accepts_nested_and_flat_forms():
    nested = CommandTable(default="bash", commands={"bash": CommandDefinition()})
    flat = CommandTable.model_validate({"default": "bash", "bash": {}})

    assert sorted(nested.commands) == ["bash"]
    assert nested == flat
    assert CommandTable.model_validate(nested.model_dump()) == nested


def test_commands_is_a_reserved_command_name():
    with pytest.raises(ConfigError) as excinfo:
        Profile.from_toml('[cmd]\ndefault = "bash"\n[cmd.bash]\n[cmd.commands]\nargs = "-x"\n')
    assert "reserved" in str(excinfo.value)


def test_disabled_nodejs_skips_source_check():
    profile = Profile.from_toml('[dependencies.nodejs]\nenabled = false\nsource = "brew"\n')
    assert profile.dependencies.nodejs.enabled is False


def test_invalid_toml_names_the_file(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[container\n")
    with pytest.raises(ConfigError) as excinfo:
        Profile.from_file(path)
    assert str(path) in str(excinfo.value)
    assert "invalid TOML" in str(excinfo.value)


def test_alias_definition_is_reference_only():
    with pytest.raises(ValueError):
        CommandDefinition(command="bash", install="RUN true")


def test_frozen_copy_is_independent(profile):
    frozen = profile.frozen_copy()
    frozen["dependencies"]["apt"].append("jq")
    assert "jq" not in profile.dependencies.apt


def test_profile_store(settings, write_profile):
    store = ProfileStore(settings.profiles_dir)
    assert store.list_available() == []

    with pytest.raises(ProfileNotFoundError):
        store.load("work")

    write_profile("work")
    write_profile("alpha")
    assert store.list_available() == ["alpha", "work"]
    assert store.load("work").description == "test profile"


def test_ensure_default_never_overwrites(settings):
    store = ProfileStore(settings.profiles_dir)

    path = store.ensure_default()
    assert path.read_text() == DEFAULT_PROFILE_TOML
    assert store.load(DEFAULT_PROFILE_NAME) == default_profile()

    path.write_text('description = "mine"\n')
    store.ensure_default()
    assert path.read_text() == 'description = "mine"\n'


def test_default_profile_digest_is_stable():
    assert digest(default_profile()) == digest(Profile.from_toml(DEFAULT_PROFILE_TOML))
