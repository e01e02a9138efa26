from frameboost.config import FrameBoostConfig


def test_config_defaults():
    cfg = FrameBoostConfig()
    assert cfg.ntrees == 50
    assert cfg.dmatrix_type == "auto"
    assert cfg.sparse_layout == "csr"
    assert cfg.score_interval == 4000
    assert cfg.initial_score_interval == 4000
    assert cfg.score_tree_interval == 0
    assert cfg.stopping_rounds == 0
    assert cfg.validate() == []


def test_excluded_columns():
    cfg = FrameBoostConfig(response_column="y", weights_column="w", fold_column="f", ignored_columns=("id",))
    assert cfg.excluded_columns() == {"y", "w", "f", "id"}


def test_validate_collects_every_problem():
    cfg = FrameBoostConfig(
        ntrees=0,
        learn_rate=1.5,
        col_sample_rate=0.0,
        grow_policy="lossguide",
        tree_method="approx",
        offset_column="o",
        score_tree_interval=-1,
        dmatrix_type="packed",  # type: ignore[arg-type]
    )
    fields = [name for name, _ in cfg.validate()]
    assert fields == [
        "dmatrix_type",
        "ntrees",
        "learn_rate",
        "col_sample_rate",
        "grow_policy",
        "score_tree_interval",
        "offset_column",
    ]


def test_lossguide_accepts_hist():
    cfg = FrameBoostConfig(grow_policy="lossguide", tree_method="hist")
    assert cfg.validate() == []
