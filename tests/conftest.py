import json
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def write_artifacts(data_dir: Path, factors, movie_ids, tmdb_map=None, shape=None) -> Path:
    """Write a model artifact set the way the training export lays it out."""
    data_dir.mkdir(parents=True, exist_ok=True)
    matrix = np.asarray(factors, dtype="<f4")
    rows, cols = matrix.shape
    (data_dir / "item_factors_shape.json").write_text(json.dumps(shape or {"rows": rows, "cols": cols}))
    (data_dir / "item_factors.f32").write_bytes(matrix.tobytes())
    (data_dir / "movie_ids.json").write_text(json.dumps(list(movie_ids)))
    (data_dir / "movieId_to_tmdb.json").write_text(
        json.dumps({str(k): v for k, v in (tmdb_map or {}).items()})
    )
    return data_dir


# Three-film catalog: A=[1,0], B=[0,1], C=[1,1]
FILM_A, FILM_B, FILM_C = 1, 2, 3


@pytest.fixture
def abc_dir(tmp_path):
    return write_artifacts(
        tmp_path / "abc",
        factors=[[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]],
        movie_ids=[FILM_A, FILM_B, FILM_C],
        tmdb_map={FILM_A: 101, FILM_B: 102, FILM_C: 103},
    )


@pytest.fixture
def abc_store(abc_dir):
    from movie_ranker.model_store import ModelStore

    return ModelStore(abc_dir).load()


@pytest.fixture
def five_film_dir(tmp_path):
    """Film 10 plus five films that score strictly lower, in order, for a fan of film 10."""
    return write_artifacts(
        tmp_path / "five",
        factors=[
            [1.0, 0.0],   # 10: the rated film
            [0.9, 0.1],   # 11
            [0.8, 0.2],   # 12
            [0.7, 0.3],   # 13
            [0.6, 0.4],   # 14
            [0.5, 0.5],   # 15
        ],
        movie_ids=[10, 11, 12, 13, 14, 15],
        tmdb_map={11: 511, 12: 512, 13: 513, 14: 514, 15: 515},
    )

