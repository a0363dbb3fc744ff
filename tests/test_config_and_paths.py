"""Tests for Config hierarchy, paths module and release configuration loading"""
import pytest
from pathlib import Path

from cigraph.api import (
    ImageBuildConfiguration,
    JobSpec,
    PromotionConfiguration,
    Refs,
    ReleaseBuildConfiguration,
)
from cigraph.config import Config
from cigraph.errors import ConfigurationError
from cigraph.paths import find_repo_root, get_repo_config_path


RELEASE_YAML = """
zz_generated_metadata:
  org: openshift
  repo: installer
  branch: master
binary_build_commands: make build
images:
- to: installer
  from: bin
- to: tests
  optional: true
tests:
- as: unit
  commands: make test
  from: src
- as: e2e
  commands: make e2e
  from: installer
  parameters: [IMAGE_INSTALLER]
promotion:
  namespace: ocp
  name: "4.8"
  excluded_images: [tests]
  additional_images:
    installer-artifacts: installer
"""


class TestRepoRootFinder:
    """Test find_repo_root() function"""

    def test_find_repo_root_in_repo_root(self, cigraph_project):
        """Test finding repo root when at the root"""
        assert find_repo_root(cigraph_project) == cigraph_project

    def test_find_repo_root_from_subdirectory(self, cigraph_project):
        """Test finding repo root from a subdirectory"""
        subdir = cigraph_project / "cmd" / "tool"
        subdir.mkdir(parents=True)

        assert find_repo_root(subdir) == cigraph_project

    def test_find_repo_root_no_settings_folder(self, temp_dir):
        assert find_repo_root(temp_dir) is None

    def test_find_repo_root_requires_git_folder(self, temp_dir):
        """Test that .cigraph requires .git at same level"""
        (temp_dir / ".cigraph").mkdir()

        assert find_repo_root(temp_dir) is None

    def test_get_repo_config_path(self, cigraph_project):
        assert get_repo_config_path(cigraph_project) == cigraph_project / ".cigraph" / "config"


class TestConfigHierarchy:
    """Test Config with hierarchical lookup"""

    def test_round_trip(self, temp_dir):
        """Test values saved to a config file are read back"""
        path = temp_dir / "global.yaml"
        config = Config(config_path=path, enable_hierarchy=False)
        config.set("cluster_url", "https://api.example.com:6443")
        config.set("parallelism", 8)
        config.save()

        loaded = Config(config_path=path, enable_hierarchy=False)
        assert loaded.cluster_url == "https://api.example.com:6443"
        assert loaded.parallelism == 8

    def test_local_overrides_global(self, temp_dir):
        """Test that local config values override global"""
        global_path = temp_dir / "global.yaml"
        global_path.write_text("cluster_url: https://global.example.com\nparallelism: 2\n")
        local_path = temp_dir / "local.yaml"
        local_path.write_text("parallelism: 6\n")

        config = Config(config_path=local_path, enable_hierarchy=True, global_path=global_path)

        assert config.parallelism == 6
        assert config.cluster_url == "https://global.example.com"

    def test_hierarchy_disabled_ignores_global(self, temp_dir):
        global_path = temp_dir / "global.yaml"
        global_path.write_text("cluster_url: https://global.example.com\n")

        config = Config(config_path=temp_dir / "local.yaml", enable_hierarchy=False, global_path=global_path)

        assert config.cluster_url is None

    def test_defaults(self, temp_dir):
        config = Config(config_path=temp_dir / "missing.yaml", enable_hierarchy=False)

        assert config.parallelism == 4
        assert config.timeout is None
        assert config.verify_tls is True
        assert config.token() is None

    @pytest.mark.parametrize("value, expected", [("false", False), ("no", False), ("true", True), (False, False)])
    def test_verify_tls_parsing(self, temp_dir, value, expected):
        config = Config(config_path=temp_dir / "c.yaml", enable_hierarchy=False)
        config.set("verify_tls", value)

        assert config.verify_tls is expected

    def test_token_read_from_file(self, temp_dir):
        token_file = temp_dir / "token"
        token_file.write_text("sha256~abc\n")
        config = Config(config_path=temp_dir / "c.yaml", enable_hierarchy=False)
        config.set("token_file", str(token_file))

        assert config.token() == "sha256~abc"

    def test_unreadable_token_file_is_configuration_error(self, temp_dir):
        config = Config(config_path=temp_dir / "c.yaml", enable_hierarchy=False)
        config.set("token_file", str(temp_dir / "missing-token"))

        with pytest.raises(ConfigurationError):
            config.token()

    def test_no_token_file_means_no_token(self, temp_dir):
        config = Config(config_path=temp_dir / "c.yaml", enable_hierarchy=False)

        assert config.token() is None

    def test_malformed_config_raises(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(RuntimeError):
            Config(config_path=path, enable_hierarchy=False)

    def test_load_with_repo_context(self, cigraph_project):
        """Test repo-local config is used inside a repo"""
        (cigraph_project / ".cigraph" / "config").write_text("report_url: https://results.example.com\n")

        config = Config.load_with_repo_context(cigraph_project)

        assert config.config_path == cigraph_project / ".cigraph" / "config"
        assert config.report_url == "https://results.example.com"

    def test_load_with_repo_context_outside_repo(self, temp_dir, monkeypatch):
        """Test the global file is used, without hierarchy, outside a repo"""
        global_path = temp_dir / "global.yaml"
        global_path.write_text("parallelism: 3\n")
        monkeypatch.setattr("cigraph.config.GLOBAL_CONFIG_PATH", global_path)

        config = Config.load_with_repo_context(temp_dir)

        assert config.config_path == global_path
        assert config.enable_hierarchy is False
        assert config.parallelism == 3


class TestReleaseBuildConfiguration:
    """Test loading and validating the release build configuration"""

    def test_load(self, temp_dir):
        path = temp_dir / "release.yaml"
        path.write_text(RELEASE_YAML)

        config = ReleaseBuildConfiguration.load(path)
        config.validate()

        assert config.metadata.org == "openshift"
        assert config.binary_build_commands == "make build"
        assert config.images[0] == ImageBuildConfiguration(to="installer", from_tag="bin")
        assert config.images[1].optional is True
        assert config.tests[1].parameters == ("IMAGE_INSTALLER",)
        assert config.promotion.name == "4.8"
        assert config.promotion.excluded_images == ("tests",)
        assert config.promotion.additional_images == {"installer-artifacts": "installer"}

    def test_load_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError):
            ReleaseBuildConfiguration.load(temp_dir / "nope.yaml")

    def test_load_invalid_yaml(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("images: [\n")

        with pytest.raises(ConfigurationError):
            ReleaseBuildConfiguration.load(path)

    def test_image_requires_to(self):
        with pytest.raises(ConfigurationError):
            ReleaseBuildConfiguration.from_dict({"images": [{"from": "src"}]})

    def test_duplicate_image_rejected(self):
        config = ReleaseBuildConfiguration.from_dict({"images": [{"to": "a"}, {"to": "a"}]})

        with pytest.raises(ConfigurationError):
            config.validate()

    def test_reserved_image_name_rejected(self):
        config = ReleaseBuildConfiguration.from_dict({"images": [{"to": "bin"}]})

        with pytest.raises(ConfigurationError):
            config.validate()

    @pytest.mark.parametrize(
        "promotion",
        [
            {"namespace": "ocp"},
            {"namespace": "ocp", "name": "4.8", "tag": "latest"},
            {"name": "4.8"},
        ],
    )
    def test_promotion_addressing_validated(self, promotion):
        with pytest.raises(ConfigurationError):
            PromotionConfiguration.from_dict(promotion).validate()

    def test_disabled_promotion_not_validated(self):
        config = ReleaseBuildConfiguration.from_dict({"promotion": {"disabled": True}})

        config.validate()

    def test_target_name(self):
        assert PromotionConfiguration(namespace="ocp", name="4.8").target_name() == "ocp/4.8:${component}"
        assert PromotionConfiguration(namespace="ocp", tag="latest").target_name() == "ocp/${component}:latest"


class TestRefs:
    """Test parsing of source refs"""

    def test_parse_full(self):
        refs = Refs.parse("openshift/installer@master:abc123,def456,0f0f")

        assert refs == Refs("openshift", "installer", "master", "abc123", ("def456", "0f0f"))
        assert refs.describe() == "openshift/installer@master:abc123,def456,0f0f"
        assert refs.clone_url() == "https://github.com/openshift/installer.git"

    def test_parse_base_only(self):
        refs = Refs.parse("org/repo@main")

        assert refs.base_sha == ""
        assert refs.pulls == ()

    @pytest.mark.parametrize("text", ["org/repo", "repo@main", "org/@main", "org/repo@"])
    def test_parse_invalid(self, text):
        with pytest.raises(ConfigurationError):
            Refs.parse(text)

    def test_owner_labels(self):
        spec = JobSpec(namespace="ns", job="j" * 80, build_id="7", labels={"team": "ci"})

        labels = spec.owner_labels()

        assert labels["team"] == "ci"
        assert len(labels["ci.openshift.io/job"]) == 63
        assert labels["ci.openshift.io/build-id"] == "7"
