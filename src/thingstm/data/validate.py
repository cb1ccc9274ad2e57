from pathlib import Path
from typing import List, Tuple, Union

from jsonschema import Draft202012Validator, SchemaError

from thingstm.logs import get_logger
from thingstm.models import AppBackup
from thingstm.recovery import ThingsError
from thingstm.version import APP_SCHEMA_VERSION
from thingstm.engine import check_version
from .io import DATA_JSON, DATA_YAML, load_data_file

# Configure log for clear output
log = get_logger("data.validate")


def backup_schema() -> dict:
    """
    Build the JSON schema of a snapshot file from the AppBackup model.

    Returns:
        A dictionary with the draft 2020-12 schema, camelCase property names.
    """
    schema = AppBackup.model_json_schema(by_alias=True)
    schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    schema["title"] = f"Things snapshot v{APP_SCHEMA_VERSION}"
    return schema


def _data_type_for(path: Path) -> int:
    return DATA_YAML if path.suffix in (".yml", ".yaml") else DATA_JSON


def validate_backup_file(file_path: Union[Path, str]) -> Tuple[bool, List[str]]:
    """
    Validates a snapshot file (JSON, or YAML by suffix) against the snapshot schema.

    Args:
        file_path: The full path to the file to validate.

    Returns:
        (valid, errors) where errors holds one readable line per problem found.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        log.error(f"File not found: {file_path}")
        return False, [f"File not found: {file_path}"]

    try:
        data = load_data_file(_data_type_for(file_path), file_path)
    except ThingsError as e:
        log.error(f"Validation failed: {e}")
        return False, [str(e)]

    if data is None:
        return False, [f"File {file_path} is empty"]
    if not isinstance(data, dict):
        return False, [f"Expected an object at the top level, got {type(data).__name__}"]

    try:
        schema = backup_schema()
        Draft202012Validator.check_schema(schema)
        validator = Draft202012Validator(schema)
    except SchemaError as e:
        log.error(f"Validation failed: The schema itself is invalid. Error: {e.message}")
        return False, [f"Invalid schema: {e.message}"]

    errors = []
    for error in validator.iter_errors(data):
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    errors.sort()

    if errors:
        log.error(f"File '{file_path}' FAILED validation with {len(errors)} errors")
        return False, errors

    # Newer snapshots still load; unknown fields are ignored
    check_version(data.get("version"))
    log.info(f"File '{file_path}' is VALID for schema version '{APP_SCHEMA_VERSION}'.")
    return True, []
