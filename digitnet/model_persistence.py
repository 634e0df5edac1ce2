"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Model bundles and their SQLite storage.

A bundle is a JSON document holding the four parameter arrays plus training
metadata. ``export_model`` / ``import_model`` convert between a parameter
context and a bundle; ``ModelDatabase`` keeps bundles in SQLite with ACID
transaction guarantees.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator, Tuple, Union
from contextlib import contextmanager
import numpy as np

from digitnet.network import NetworkParameters, ShapeError

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = os.getenv('MODEL_DIR', 'models')
DB_FILENAME = 'models.db'

METADATA_FIELDS = (
    'epochs',
    'learning_rate',
    'batch_size',
    'hidden_nodes',
    'trained_at',
    'accuracy'
)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy values to plain Python for JSON serialization.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        return super().default(obj)


# ============================================================================
# BUNDLE EXPORT / IMPORT
# ============================================================================

def model_to_bundle(
    params: NetworkParameters,
    metadata: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build the plain-dict bundle for a parameter context."""
    metadata = dict(metadata or {})
    metadata.setdefault('hidden_nodes', params.hidden_size)
    return {
        'weights1': params.weights1,
        'weights2': params.weights2,
        'biases1': params.biases1,
        'biases2': params.biases2,
        'metadata': {field: metadata.get(field) for field in METADATA_FIELDS}
    }


def export_model(
    params: NetworkParameters,
    metadata: Optional[Dict[str, Any]] = None
) -> str:
    """
    Serialize parameters and metadata to a JSON bundle.

    Float64 values survive the JSON round trip exactly, so a re-imported model
    makes exactly the same predictions.

    Example:
        >>> payload = export_model(params, {'epochs': 5, 'accuracy': 0.91})
        >>> restored, metadata = import_model(payload)
    """
    return json.dumps(model_to_bundle(params, metadata), cls=NetworkEncoder)


def import_model(
    payload: Union[str, bytes, Dict[str, Any]]
) -> Tuple[NetworkParameters, Dict[str, Any]]:
    """
    Restore parameters and metadata from a bundle without retraining.

    Args:
        payload: JSON text or an already decoded bundle dict

    Returns:
        tuple: (NetworkParameters, metadata dict)

    Raises:
        ShapeError: If a key is missing or a shape does not match
            784xH / Hx10 / H / 10
    """
    bundle = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
    if not isinstance(bundle, dict):
        raise ShapeError("model bundle must be a JSON object")

    missing = [
        key for key in ('weights1', 'weights2', 'biases1', 'biases2')
        if key not in bundle
    ]
    if missing:
        raise ShapeError(f"model bundle is missing {', '.join(missing)}")

    try:
        params = NetworkParameters(
            bundle['weights1'],
            bundle['weights2'],
            bundle['biases1'],
            bundle['biases2']
        )
    except ShapeError:
        raise
    except (TypeError, ValueError) as e:
        # Ragged nested lists fail inside numpy before shape validation
        raise ShapeError(f"model bundle has malformed arrays: {e}") from e

    raw_metadata = bundle.get('metadata') or {}
    metadata = {field: raw_metadata.get(field) for field in METADATA_FIELDS}
    hidden_nodes = metadata.get('hidden_nodes')
    if hidden_nodes is not None and hidden_nodes != params.hidden_size:
        raise ShapeError(
            f"metadata says {hidden_nodes} hidden nodes but weights have "
            f"{params.hidden_size}"
        )
    metadata['hidden_nodes'] = params.hidden_size

    return params, metadata


# ============================================================================
# SQLITE STORAGE
# ============================================================================

class ModelDatabase:
    """
    Manages SQLite database for model persistence.

    The database stores:
    - Model metadata (hidden size, training status, accuracy)
    - The JSON bundle produced by ``export_model``
    """

    def __init__(self, db_path: str = f'{DEFAULT_MODEL_DIR}/{DB_FILENAME}'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS models (
                    model_id TEXT PRIMARY KEY,
                    hidden_nodes INTEGER NOT NULL,
                    model_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            # Create index for common queries
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_trained
                ON models(trained)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON models(created_at DESC)
            ''')

    def save_model_to_db(
        self,
        params: NetworkParameters,
        model_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        trained: bool = True
    ) -> bool:
        """
        Save a model to the database, replacing any model with the same id.

        Args:
            params: Parameters to save
            model_id: Unique identifier for the model
            metadata: Training metadata stored in the bundle
            trained: Whether the model has been trained

        Returns:
            bool: True if successful

        Raises:
            ValueError: If the metadata accuracy is out of valid range
        """
        accuracy = (metadata or {}).get('accuracy')
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        model_data = export_model(params, metadata)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            # Keep created_at of an existing row so that age-based cleanup
            # counts from the first save
            cursor.execute('''
                INSERT INTO models
                (model_id, hidden_nodes, model_data, trained, accuracy)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(model_id) DO UPDATE SET
                    hidden_nodes = excluded.hidden_nodes,
                    model_data = excluded.model_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                model_id,
                params.hidden_size,
                model_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved model '{model_id}' with hidden_nodes="
            f"{params.hidden_size}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_model_from_db(
        self,
        model_id: str
    ) -> Optional[Tuple[NetworkParameters, Dict[str, Any]]]:
        """
        Load a model from the database.

        Args:
            model_id: Unique identifier of the model

        Returns:
            (params, metadata) or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT model_data FROM models WHERE model_id = ?',
                (model_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Model '{model_id}' not found")
                return None

            params, metadata = import_model(row['model_data'])
            logger.info(f"Loaded model '{model_id}'")
            return params, metadata

    def list_models_from_db(self) -> List[Dict[str, Any]]:
        """
        List all models with metadata.

        Returns:
            List of model metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    model_id,
                    hidden_nodes,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM models
                ORDER BY created_at DESC
            ''')

            models = [self._row_to_metadata(row) for row in cursor.fetchall()]

            logger.debug(f"Listed {len(models)} models")
            return models

    def delete_model_from_db(self, model_id: str) -> bool:
        """
        Delete a model from the database.

        Args:
            model_id: Unique identifier of the model

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM models WHERE model_id = ?',
                (model_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted model '{model_id}'")
            else:
                logger.warning(
                    f"Could not delete model '{model_id}': not found"
                )
            return deleted

    def get_model_metadata_from_db(
        self,
        model_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get model metadata without decoding the parameters.

        Args:
            model_id: Unique identifier of the model

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    model_id,
                    hidden_nodes,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM models
                WHERE model_id = ?
            ''', (model_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for model '{model_id}' not found"
                )
                return None

            return self._row_to_metadata(row)

    def delete_old_models_from_db(self, days: int) -> int:
        """
        Delete models created more than ``days`` days ago.

        Args:
            days: Age threshold in days (0 deletes everything older than now)

        Returns:
            int: Number of deleted models

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM models
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))

            deleted = cursor.rowcount
            logger.info(f"Deleted {deleted} model(s) older than {days} day(s)")
            return deleted

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        hidden_nodes = row['hidden_nodes']
        return {
            'model_id': row['model_id'],
            'hidden_nodes': hidden_nodes,
            'weights_shape': [[784, hidden_nodes], [hidden_nodes, 10]],
            'biases_shape': [[hidden_nodes], [10]],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }


# Global database instance
_db = None


def _get_db(model_dir: str = DEFAULT_MODEL_DIR) -> ModelDatabase:
    """
    Get the database for ``model_dir``.

    The default directory uses a lazily created global instance; any other
    directory gets a fresh one.

    Returns:
        ModelDatabase: The database instance
    """
    global _db
    if model_dir != DEFAULT_MODEL_DIR:
        return ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))
    if _db is None:
        _db = ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))
    return _db


def save_model(
    params: NetworkParameters,
    model_id: str,
    metadata: Optional[Dict[str, Any]] = None,
    model_dir: str = DEFAULT_MODEL_DIR,
    trained: bool = True
) -> bool:
    """
    Save a model to the SQLite database.

    Args:
        params: The parameters to save
        model_id: A unique identifier for the model
        metadata: Training metadata (epochs, learning_rate, ..., accuracy)
        model_dir: Directory for the database file
        trained: Boolean indicating if the model has been trained

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> params = initialize_parameters(32)
        >>> save_model(params, "my_model", trained=False)
        True
    """
    if not model_id or not isinstance(model_id, str):
        logger.error("Invalid model_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).save_model_to_db(
            params, model_id, metadata, trained
        )

    except ValueError as e:
        logger.error(f"Validation error saving model '{model_id}': {e}")
        return False
    except (AttributeError, TypeError) as e:
        logger.error(
            f"Serialization error saving model '{model_id}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving model '{model_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving model '{model_id}': {e}"
        )
        return False


def load_model(
    model_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Tuple[NetworkParameters, Dict[str, Any]]]:
    """
    Load a model from the SQLite database.

    Args:
        model_id: The unique identifier of the model to load
        model_dir: Directory where the database is stored

    Returns:
        (params, metadata) or None if not found or unreadable

    Example:
        >>> loaded = load_model("my_model")
        >>> if loaded:
        ...     params, metadata = loaded
    """
    if not model_id or not isinstance(model_id, str):
        logger.error("Invalid model_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).load_model_from_db(model_id)

    except (json.JSONDecodeError, ShapeError) as e:
        logger.error(
            f"Deserialization error loading model '{model_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading model '{model_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error loading model '{model_id}': {e}"
        )
        return None


def list_saved_models(
    model_dir: str = DEFAULT_MODEL_DIR
) -> List[Dict[str, Any]]:
    """
    List all saved models with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved model
    """
    try:
        return _get_db(model_dir).list_models_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing models: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing models: {e}")
        return []


def delete_model(model_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> bool:
    """
    Delete a saved model from the database.

    Args:
        model_id: The unique identifier of the model to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not model_id or not isinstance(model_id, str):
        logger.error("Invalid model_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).delete_model_from_db(model_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting model '{model_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting model '{model_id}': {e}"
        )
        return False


def get_model_metadata(
    model_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific model without decoding its parameters.

    Args:
        model_id: The unique identifier of the model
        model_dir: Directory where the database is stored

    Returns:
        dict: Model metadata or None if not found

    Example:
        >>> metadata = get_model_metadata("my_model")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not model_id or not isinstance(model_id, str):
        logger.error("Invalid model_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).get_model_metadata_from_db(model_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{model_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error getting metadata for '{model_id}': {e}"
        )
        return None


def delete_old_models(days: int = 2, model_dir: str = DEFAULT_MODEL_DIR) -> int:
    """
    Delete models older than ``days`` days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of deleted models, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_models_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old models: {e}")
        return -1
