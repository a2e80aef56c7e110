"""Persisted shapes of universal transactions.

A universal transaction is stored as a ``universal_transaction`` entity whose
code is the transaction number, plus two metadata documents:
- transaction_details / universal_transaction: the full transaction
- ai_intelligence / classification: classification provenance
"""

from typing import Any, Dict, Optional, Tuple

from core.errors import TransactionNotFoundError
from core.models.ledger import UniversalTransaction

from storage.migration_safe import MigrationSafeAdapter, WriteResult

TRANSACTION_ENTITY_TYPE = "universal_transaction"
TRANSACTION_METADATA_TYPE = "transaction_details"
TRANSACTION_METADATA_KEY = "universal_transaction"
CLASSIFICATION_METADATA_TYPE = "ai_intelligence"
CLASSIFICATION_METADATA_KEY = "classification"


def entity_row(transaction: UniversalTransaction) -> Dict[str, Any]:
    """Entity row for a universal transaction."""
    return {
        "id": transaction.id,
        "organization_id": transaction.organization_id,
        "entity_type": TRANSACTION_ENTITY_TYPE,
        "entity_code": transaction.transaction_number,
        "entity_name": f"{transaction.transaction_type.value} {transaction.transaction_number}",
        "status": transaction.posting_status.value,
    }


async def write_details(adapter: MigrationSafeAdapter, transaction: UniversalTransaction) -> WriteResult:
    """Create the transaction_details document."""
    return await adapter.create_metadata({
        "organization_id": transaction.organization_id,
        "entity_id": transaction.id,
        "metadata_type": TRANSACTION_METADATA_TYPE,
        "metadata_key": TRANSACTION_METADATA_KEY,
        "metadata_value": transaction.model_dump(mode="json"),
    })


async def write_classification(
    adapter: MigrationSafeAdapter,
    transaction: UniversalTransaction,
    classification: Dict[str, Any],
) -> WriteResult:
    """Create the classification provenance document."""
    return await adapter.create_metadata({
        "organization_id": transaction.organization_id,
        "entity_id": transaction.id,
        "metadata_type": CLASSIFICATION_METADATA_TYPE,
        "metadata_key": CLASSIFICATION_METADATA_KEY,
        "metadata_value": classification,
    })


async def save_details(adapter: MigrationSafeAdapter, transaction: UniversalTransaction) -> None:
    """
    Replace the stored transaction_details and mirror the posting status.

    Raises:
        PersistenceError: If either update fails
    """
    await adapter.update_metadata(
        transaction.id,
        TRANSACTION_METADATA_TYPE,
        TRANSACTION_METADATA_KEY,
        transaction.model_dump(mode="json"),
    )
    await adapter.update_entity_status(transaction.id, transaction.posting_status.value)


async def find_transaction(
    adapter: MigrationSafeAdapter,
    organization_id: str,
    transaction_number: str,
) -> Optional[UniversalTransaction]:
    """Load a transaction by number (None if no entity exists)."""
    entity = await adapter.find_entity_by_code(organization_id, TRANSACTION_ENTITY_TYPE, transaction_number)
    if entity is None:
        return None

    metadata = await adapter.get_metadata(entity["id"], TRANSACTION_METADATA_TYPE, TRANSACTION_METADATA_KEY)
    if metadata is None or metadata["metadata_value"] is None:
        raise TransactionNotFoundError(organization_id, transaction_number, detail="has no transaction details")

    transaction = UniversalTransaction.model_validate(metadata["metadata_value"])
    if transaction.id != entity["id"]:
        transaction = transaction.model_copy(update={"id": entity["id"]})
    return transaction


async def load_transaction(
    adapter: MigrationSafeAdapter,
    organization_id: str,
    transaction_number: str,
) -> UniversalTransaction:
    """
    Load a transaction by number.

    Raises:
        TransactionNotFoundError: If it does not exist
    """
    transaction = await find_transaction(adapter, organization_id, transaction_number)
    if transaction is None:
        raise TransactionNotFoundError(organization_id, transaction_number)
    return transaction


async def load_classification(adapter: MigrationSafeAdapter, transaction_id: str) -> Optional[Dict[str, Any]]:
    """Stored classification provenance for a transaction, if any."""
    metadata = await adapter.get_metadata(transaction_id, CLASSIFICATION_METADATA_TYPE, CLASSIFICATION_METADATA_KEY)
    return metadata["metadata_value"] if metadata else None


def collect_advisories(*results: Optional[WriteResult]) -> Tuple[str, ...]:
    """Advisory strings from successful-but-degraded writes."""
    return tuple(r.advisory for r in results if r is not None and r.advisory)
