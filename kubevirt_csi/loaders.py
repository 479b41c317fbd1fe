"""Functions to read the storage class enforcement YAML document."""

from logging import Logger

import yaml.parser
from pydantic import ValidationError

from kubevirt_csi.exceptions import InvalidYamlError
from kubevirt_csi.models.enforcement import StorageClassEnforcement


def load_enforcement(text: str, *, logger: Logger) -> StorageClassEnforcement:
    """Load the storage class enforcement rules from a YAML document.

    Without a document any infra storage class is allowed.

    Args:
        text (str): YAML document.
        logger (Logger): Logger instance.

    Returns:
        StorageClassEnforcement: the enforcement rules.

    Raises:
        InvalidYamlError when the document is not parsable or not valid.

    """
    if text.strip() == "":
        logger.info("No storage class enforcement. Allowing all storage classes")
        return StorageClassEnforcement(allow_all=True, allow_default=True)

    try:
        data = yaml.load(text, Loader=yaml.FullLoader)
    except (yaml.parser.ParserError, yaml.scanner.ScannerError) as e:
        msg = "Error parsing storage class enforcement"
        logger.error(msg)
        raise InvalidYamlError(msg) from e

    if not isinstance(data, dict):
        msg = "Storage class enforcement must be a mapping"
        logger.error(msg)
        raise InvalidYamlError(msg)

    try:
        enforcement = StorageClassEnforcement(**data)
    except ValidationError as e:
        msg = f"Invalid storage class enforcement: {e!r}"
        logger.error(msg)
        raise InvalidYamlError(msg) from e

    logger.debug("Storage class enforcement: %s", enforcement)
    return enforcement
