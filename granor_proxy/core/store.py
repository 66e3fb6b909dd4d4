import logging

from env_utils import resolve_gcp_project_id

from .schemas import ResolvedTransaction

USERS = "users"
TRANSACTIONS = "transactions"
ACCOUNTS = "accounts"
CREDIT_CARDS = "creditCards"
CATEGORIES = "categories"
PREFERENCES = "preferences"
PREFERENCES_DOC = "user"


def get_firestore_client(project=None):
    from google.cloud import firestore

    project = project or resolve_gcp_project_id(set_env=True)
    return firestore.AsyncClient(project=project)


class FirestoreStore:
    """Per-user document store: everything lives under ``users/{uid}``."""

    def __init__(self, client=None, project=None, timeout=10.0):
        self._client = client
        self._project = project
        self.timeout = timeout
        self._logger = logging.getLogger("granor_proxy.store")

    def _ensure_client(self):
        if self._client is not None:
            return self._client
        try:
            self._client = get_firestore_client(self._project)
        except Exception as exc:
            raise RuntimeError(
                "google-cloud-firestore and application credentials are required for storage access"
            ) from exc
        return self._client

    def _user_collection(self, user_id, name):
        if not user_id:
            raise ValueError("user_id is required to address a user collection")
        client = self._ensure_client()
        return client.collection(USERS).document(user_id).collection(name)

    async def _list(self, user_id, name):
        snapshots = await self._user_collection(user_id, name).get(timeout=self.timeout)
        records = []
        for snapshot in snapshots:
            data = snapshot.to_dict() or {}
            records.append({**data, "id": snapshot.id})
        return records

    async def list_accounts(self, user_id):
        return await self._list(user_id, ACCOUNTS)

    async def list_credit_cards(self, user_id):
        return await self._list(user_id, CREDIT_CARDS)

    async def list_categories(self, user_id):
        return await self._list(user_id, CATEGORIES)

    async def get_preferences(self, user_id):
        doc_ref = self._user_collection(user_id, PREFERENCES).document(PREFERENCES_DOC)
        snapshot = await doc_ref.get(timeout=self.timeout)
        if not snapshot.exists:
            return {}
        return snapshot.to_dict() or {}

    async def add_transaction(self, user_id, transaction: ResolvedTransaction):
        doc_ref = self._user_collection(user_id, TRANSACTIONS).document()
        data = transaction.to_document()
        data["id"] = doc_ref.id
        await doc_ref.set(data, timeout=self.timeout)
        self._logger.info(
            "Transaction stored for %s: %s %s %s", user_id, doc_ref.id, transaction.type, transaction.amount
        )
        return doc_ref.id
