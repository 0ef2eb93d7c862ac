import pytest

from usl_config import CHART_NAMES, UslOptions, build_options, load_options_file
from usl_dataset import ConfigurationError


class TestUslOptions:
    """Test cases for option defaults and validation"""

    def test_defaults(self):
        options = UslOptions().validate()
        assert options.watch_port == 3306
        assert options.conversion_mode == "none"
        assert options.selected_charts == CHART_NAMES
        assert options.image_extension == "png"
        assert options.axis_title.startswith("Concurrency")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"conversion_mode": "sniffing"},
            {"image_format": "gif"},
            {"axis_label": "users"},
            {"only_outputs": {"efficiency", "histogram"}},
            {"aggregation_interval": 0},
            {"c1_scale_factor": -1},
            {"max_valid_concurrency": -2},
            {"watch_port": 70000},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            UslOptions(**overrides).validate()

    def test_selected_charts_keep_canonical_order(self):
        options = UslOptions(only_outputs=["model-vs-actual", "efficiency"])
        assert options.selected_charts == ("efficiency", "model-vs-actual")

    def test_vector_formats(self):
        assert UslOptions(image_format="vector-eps").image_extension == "eps"
        assert UslOptions(image_format="vector-pdf").image_extension == "pdf"


class TestBuildOptions:
    def test_overrides_win_over_file_values(self):
        options = build_options({"watch_port": 5432, "skip_refit": True}, watch_port=6432, skip_refit=None)
        assert options.watch_port == 6432
        assert options.skip_refit is True

    def test_comma_separated_only_outputs(self):
        options = build_options(only_outputs="efficiency, deviation")
        assert options.only_outputs == {"efficiency", "deviation"}

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="unknown option"):
            build_options(colour="blue")

    def test_wrong_type(self):
        with pytest.raises(ConfigurationError):
            build_options({"aggregation_interval": "soon"})


class TestLoadOptionsFile:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "usl.yaml"
        path.write_text("conversion-mode: counter_snapshots\naggregation_interval: 10\nonly_outputs: [efficiency]\n")
        options = build_options(load_options_file(str(path)))
        assert options.conversion_mode == "counter_snapshots"
        assert options.aggregation_interval == 10
        assert options.selected_charts == ("efficiency",)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "usl.yaml"
        path.write_text("")
        assert load_options_file(str(path)) == {}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "usl.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_options_file(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "usl.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_options_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_options_file(str(tmp_path / "missing.yaml"))
