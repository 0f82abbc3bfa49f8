"""
REST client for an Aptos-compatible (Movement) fullnode.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from moove_money.batch import normalize_address
from moove_money.errors import LedgerError, ResourceNotFound, TransientQueryFailure
from moove_money.payload import EntryFunctionPayload

logger = logging.getLogger(__name__)


class LedgerClient:
    """
    Client for the fullnode REST API.

    Example:
        >>> client = LedgerClient("https://testnet.movementnetwork.xyz/v1")
        >>> client.get_account_resource(address, coin_store_type())
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        max_gas_amount: int = 200_000,
        gas_unit_price: int = 100,
        expiration_secs: int = 60,
        faucet_url: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Fullnode REST URL, including the ``/v1`` suffix
            timeout: Request timeout in seconds
            max_gas_amount: Gas limit attached to every submitted transaction
            gas_unit_price: Price per gas unit, in octas
            expiration_secs: Lifetime of a submitted transaction
            faucet_url: Optional faucet used by ``fund_account``
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_gas_amount = max_gas_amount
        self.gas_unit_price = gas_unit_price
        self.expiration_secs = expiration_secs
        self.faucet_url = faucet_url.rstrip('/') if faucet_url else None
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
        })

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientQueryFailure(f"{method} {url} failed: {e}")

        if response.status_code == 404:
            raise ResourceNotFound(_error_message(response), 404)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientQueryFailure(_error_message(response), response.status_code)
        if response.status_code >= 400:
            raise LedgerError(_error_message(response), response.status_code)
        return response.json()

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make GET request"""
        return self._request('GET', f"{self.base_url}{endpoint}", params=params)

    def _post(self, endpoint: str, data: Any) -> Any:
        """Make POST request"""
        return self._request('POST', f"{self.base_url}{endpoint}", json=data)

    # Accounts

    def get_account(self, address: str) -> Dict[str, Any]:
        """
        Get sequence number and authentication key of an account.

        Raises:
            ResourceNotFound: the account does not exist yet
        """
        return self._get(f'/accounts/{normalize_address(address)}')

    def get_account_resource(self, address: str, resource_type: str) -> Dict[str, Any]:
        """
        Get one Move resource stored under an account.

        Raises:
            ResourceNotFound: the account or the resource does not exist
        """
        return self._get(
            f'/accounts/{normalize_address(address)}/resource/{quote(resource_type, safe="")}'
        )

    def get_account_transactions(
        self, address: str, limit: int = 25, start: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Get transactions sent by an account, oldest first.

        Args:
            address: Account address
            limit: Maximum number of transactions
            start: First sequence number to return
        """
        params: Dict[str, Any] = {'limit': limit}
        if start is not None:
            params['start'] = start
        return self._get(f'/accounts/{normalize_address(address)}/transactions', params)

    # Transactions

    def get_transaction_by_hash(self, txn_hash: str) -> Dict[str, Any]:
        """
        Look up a transaction. While it is still in the mempool the
        response has ``type == "pending_transaction"``.
        """
        return self._get(f'/transactions/by_hash/{txn_hash}')

    def get_transaction_by_version(self, version: int) -> Dict[str, Any]:
        return self._get(f'/transactions/by_version/{int(version)}')

    def submit_transaction(self, payload: EntryFunctionPayload, signer: Any) -> Dict[str, Any]:
        """
        Sign ``payload`` as ``signer`` and submit it.

        The node encodes the signing message (``/transactions/encode_submission``);
        the signer only ever sees those bytes.

        Returns:
            The pending transaction, including its ``hash``
        """
        account = self.get_account(signer.address)
        txn = {
            'sender': signer.address,
            'sequence_number': str(account['sequence_number']),
            'max_gas_amount': str(self.max_gas_amount),
            'gas_unit_price': str(self.gas_unit_price),
            'expiration_timestamp_secs': str(int(time.time()) + self.expiration_secs),
            'payload': payload.to_json(),
        }
        message_hex = self._post('/transactions/encode_submission', txn)
        signature = signer.sign(bytes.fromhex(message_hex[2:] if message_hex.startswith('0x') else message_hex))

        txn['signature'] = {
            'type': 'ed25519_signature',
            'public_key': signer.public_key_hex,
            'signature': '0x' + signature.hex(),
        }
        pending = self._post('/transactions', txn)
        logger.debug("Submitted %s as %s", payload.function, pending.get('hash'))
        return pending

    # Faucet

    def fund_account(self, address: str, amount: int) -> List[str]:
        """
        Mint ``amount`` octas to ``address`` through the faucet.

        Returns:
            Hashes of the faucet transactions
        """
        if not self.faucet_url:
            raise LedgerError("No faucet URL configured")
        return self._request(
            'POST',
            f"{self.faucet_url}/mint",
            params={'amount': amount, 'address': normalize_address(address)},
        )

    def close(self):
        """Close the session"""
        self.session.close()

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, *args):
        """Context manager exit"""
        self.close()


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(body, dict) and 'message' in body:
        code = body.get('error_code')
        return f"{code}: {body['message']}" if code else str(body['message'])
    return f"HTTP {response.status_code}: {body}"
