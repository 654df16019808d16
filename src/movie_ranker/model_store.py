import json
import logging
import threading
from pathlib import Path

import numpy as np

from .config import (
    DATA_DIR,
    SHAPE_FILE,
    FACTORS_FILE,
    MOVIE_IDS_FILE,
    TMDB_MAP_FILE,
)
from .errors import ModelLoadError, ModelNotLoadedError

logger = logging.getLogger(__name__)

FLOAT32_BYTES = 4


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _read_json(path: Path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ModelLoadError(f"Missing model artifact: {path}") from e
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ModelLoadError(f"Unreadable model artifact {path}: {e}") from e


def _parse_external_id(raw) -> int | None:
    if _is_int(raw):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


class ModelStore:
    """
    Read-only holder for the precomputed item factor matrix and id mappings.

    The matrix is a row-major float32 table of shape (rows, cols) where row i
    is the latent vector of ``item_ids[i]``. Construct one store per process
    and pass it to every request; ``load()`` may be called from any number of
    threads and performs the disk read exactly once.
    """

    def __init__(self, data_dir: str | Path = DATA_DIR):
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._loaded = False
        self._factors: np.ndarray | None = None
        self._item_ids: tuple[int, ...] = ()
        self._index: dict[int, int] = {}
        self._external_ids: dict[int, int] = {}
        self.load_count = 0

    def load(self) -> 'ModelStore':
        """Load artifacts from ``data_dir`` once; later calls are no-ops."""
        if self._loaded:
            return self

        with self._lock:
            if self._loaded:
                return self

            factors, item_ids, external_ids = self._read_artifacts()

            self._factors = factors
            self._item_ids = item_ids
            self._index = {movie_id: i for i, movie_id in enumerate(item_ids)}
            self._external_ids = external_ids
            self.load_count += 1
            self._loaded = True

        logger.info(
            f"Loaded item factors {self.rows}x{self.cols} from {self.data_dir} "
            f"({len(self._external_ids)} items with external ids)"
        )
        return self

    def _read_artifacts(self) -> tuple[np.ndarray, tuple[int, ...], dict[int, int]]:
        shape = _read_json(self.data_dir / SHAPE_FILE)
        if not isinstance(shape, dict):
            raise ModelLoadError(f"{SHAPE_FILE} must be an object with 'rows' and 'cols'")
        rows, cols = shape.get("rows"), shape.get("cols")
        if not (_is_int(rows) and _is_int(cols)) or rows <= 0 or cols <= 0:
            raise ModelLoadError(f"Invalid factor shape rows={rows!r} cols={cols!r}")

        factors_path = self.data_dir / FACTORS_FILE
        try:
            raw = factors_path.read_bytes()
        except FileNotFoundError as e:
            raise ModelLoadError(f"Missing model artifact: {factors_path}") from e
        except OSError as e:
            raise ModelLoadError(f"Unreadable model artifact {factors_path}: {e}") from e

        expected = rows * cols * FLOAT32_BYTES
        if len(raw) != expected:
            raise ModelLoadError(
                f"{FACTORS_FILE} holds {len(raw)} bytes, expected {expected} for shape {rows}x{cols}"
            )
        factors = np.frombuffer(raw, dtype="<f4").reshape(rows, cols)
        factors.flags.writeable = False

        movie_ids = _read_json(self.data_dir / MOVIE_IDS_FILE)
        if not isinstance(movie_ids, list) or len(movie_ids) != rows:
            count = len(movie_ids) if isinstance(movie_ids, list) else "non-list"
            raise ModelLoadError(f"{MOVIE_IDS_FILE} has {count} ids, expected {rows}")
        if not all(_is_int(m) for m in movie_ids):
            raise ModelLoadError(f"{MOVIE_IDS_FILE} contains non-integer ids")
        if len(set(movie_ids)) != rows:
            raise ModelLoadError(f"{MOVIE_IDS_FILE} contains duplicate ids")

        raw_map = _read_json(self.data_dir / TMDB_MAP_FILE)
        if not isinstance(raw_map, dict):
            raise ModelLoadError(f"{TMDB_MAP_FILE} must be a JSON object")

        external_ids: dict[int, int] = {}
        dropped = 0
        for key, value in raw_map.items():
            movie_id = _parse_external_id(key)
            external_id = _parse_external_id(value)
            if movie_id is None or external_id is None:
                dropped += 1
                continue
            external_ids[movie_id] = external_id
        if dropped:
            logger.warning(f"Ignored {dropped} malformed entries in {TMDB_MAP_FILE}")

        return factors, tuple(movie_ids), external_ids

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise ModelNotLoadedError("ModelStore.load() must be called before reading model data")

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def rows(self) -> int:
        self._require_loaded()
        return self._factors.shape[0]

    @property
    def cols(self) -> int:
        self._require_loaded()
        return self._factors.shape[1]

    @property
    def factors(self) -> np.ndarray:
        self._require_loaded()
        return self._factors

    @property
    def item_ids(self) -> tuple[int, ...]:
        self._require_loaded()
        return self._item_ids

    @property
    def external_id_count(self) -> int:
        self._require_loaded()
        return len(self._external_ids)

    def vector_at(self, index: int) -> np.ndarray:
        """Read-only view of the factor row at ``index``."""
        self._require_loaded()
        if not 0 <= index < self._factors.shape[0]:
            raise IndexError(f"Item index {index} out of range [0, {self._factors.shape[0]})")
        return self._factors[index]

    def index_of(self, movie_id: int) -> int | None:
        self._require_loaded()
        return self._index.get(movie_id)

    def external_id_of(self, movie_id: int) -> int | None:
        self._require_loaded()
        return self._external_ids.get(movie_id)
