import tempfile, yaml, json, os
from typing import Union, Any, Optional
from pathlib import Path
from thingstm.recovery import FileOperationError, FatalError, CorruptionError
from thingstm.logs import get_logger

log = get_logger("io")

DATA_YAML = 0
DATA_JSON = 1

SUFFIXES = {
    DATA_YAML: ".yml",
    DATA_JSON: ".json",
}

def _cleanup(temp_path: Optional[str]):
    if temp_path is not None and os.path.exists(temp_path):
        try:
            os.unlink(temp_path)
            log.debug(f"Cleaned up temporary file: {temp_path}")
        except OSError as cleanup_error:
            log.warning(f"Could not clean up temp file {temp_path}: {cleanup_error}")

def _create_dirs(file_path : Path):
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        error_msg = f"Cannot create directory {file_path.parent}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

def atomic_write(data_type : int, file_path : Union[Path, str], data : Any, create_dirs : bool = False):
    """
    Serialize and save data to a YAML or JSON file using atomic updates.

    ``data`` may be a mapping/list, or an already encoded JSON string for DATA_JSON.
    """
    file_path = Path(file_path)
    temp_path = None

    try:
        if create_dirs:
            _create_dirs(file_path)

        # Temporary file in the target directory so os.replace stays atomic
        with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', dir=file_path.parent, prefix=f".{file_path.name}.", suffix='.tmp', delete=False) as temp_file:
            temp_path = temp_file.name
            if data_type == DATA_YAML:
                yaml.safe_dump(data, temp_file, default_flow_style=False, sort_keys=False, indent=2, allow_unicode=True)
            elif data_type == DATA_JSON:
                if isinstance(data, str):
                    temp_file.write(data)
                else:
                    json.dump(data, temp_file, indent=2, ensure_ascii=False)
            else:
                raise FatalError("Unsupported Data Format")
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(temp_path, file_path)
        log.debug(f"Successfully saved file: {file_path}")
        return True

    except (yaml.YAMLError, TypeError, ValueError) as e:
        _cleanup(temp_path)
        error_msg = (f"Data serialization failed for {file_path}. "
                    f"In-memory data may be corrupt or contain non-serializable types: {e}")
        log.critical(error_msg)
        raise FatalError(error_msg) from e

    except FatalError:
        _cleanup(temp_path)
        raise

    except (IOError, OSError, PermissionError) as e:
        _cleanup(temp_path)
        error_msg = f"I/O error saving file {file_path}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

def load_data_file(data_type : int, file_path : Union[Path, str]) -> Any:
    """
    Load and parse a YAML or JSON file.

    Args:
        data_type: DATA_YAML or DATA_JSON
        file_path: Path to the file

    Returns:
        Parsed value, or None if the file doesn't exist or is empty

    Raises:
        CorruptionError: the file exists but cannot be parsed
        FileOperationError: the file cannot be read
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return None

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            text = f.read()
        if not text.strip():
            return None
        if data_type == DATA_YAML:
            return yaml.safe_load(text)
        return json.loads(text)

    except (json.JSONDecodeError, yaml.YAMLError) as e:
        # Syntax errors mean a corrupted file
        raise CorruptionError(f"Syntax error in {file_path}: {e}") from e
    except (IOError, OSError, PermissionError) as e:
        raise FileOperationError(f"Failed to read file {file_path}: {e}") from e

def load_json_file(file_path : Union[Path, str]) -> Union[None, dict]:
    """
    Load and parse a JSON file that must contain an object.

    Returns:
        Parsed data as dict, or None if the file doesn't exist
    """
    data = load_data_file(DATA_JSON, file_path)
    if not isinstance(data, (dict, type(None))):
        raise CorruptionError(f"File {file_path} contains invalid data structure")
    return data
