import logging
import re
import threading
from dataclasses import dataclass

from web3 import Web3

from errors import MintError, ValidationError

logger = logging.getLogger(__name__)

WALLET_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')


def _fn(name, inputs, outputs=(), mutability='nonpayable'):
    return {
        'type': 'function',
        'name': name,
        'inputs': [{'internalType': t, 'name': n, 'type': t} for n, t in inputs],
        'outputs': [{'internalType': t, 'name': '', 'type': t} for t in outputs],
        'stateMutability': mutability,
    }


ProofOfSkillABI = [
    _fn('name', [], ['string'], 'view'),
    _fn('symbol', [], ['string'], 'view'),
    _fn('balanceOf', [('owner', 'address')], ['uint256'], 'view'),
    _fn('owner', [], ['address'], 'view'),
    _fn('ownerOf', [('tokenId', 'uint256')], ['address'], 'view'),
    _fn('tokenURI', [('tokenId', 'uint256')], ['string'], 'view'),
    _fn('mint', [('to', 'address'), ('uri', 'string')], ['uint256']),
    _fn('revoke', [('tokenId', 'uint256')]),
    _fn('transferOwnership', [('newOwner', 'address')]),
    _fn('supportsInterface', [('interfaceId', 'bytes4')], ['bool'], 'view'),
]


def is_valid_wallet_address(address):
    return bool(address) and bool(WALLET_ADDRESS_RE.match(address))


def validate_wallet_address(address):
    if not is_valid_wallet_address(address):
        raise ValidationError(f'Invalid wallet address: {address}')
    return address


@dataclass
class MintReceipt:
    tx_hash: str
    block_number: int


class CertificateMinter:
    """Mints Proof of Skill tokens from the contract owner's key."""

    def __init__(self, rpc_url, private_key, contract_address, chain_id=None, receipt_timeout=120, web3=None):
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': 30}))
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        try:
            self.account = self.web3.eth.account.from_key(private_key)
            self.contract = self.web3.eth.contract(
                address=Web3.to_checksum_address(contract_address),
                abi=ProofOfSkillABI,
            )
        except Exception as e:
            raise MintError(f'Contract setup failed: {e}')
        self._nonce_lock = threading.Lock()
        self._next_nonce = None

    def probe(self):
        """Read-only name() call to check the RPC and contract are reachable."""
        try:
            return self.contract.functions.name().call()
        except Exception as e:
            raise MintError(f'Contract connection failed: {e}')

    def _send_mint(self, to_address, token_uri):
        # Concurrent mints share one signer; nonces are handed out one by one.
        with self._nonce_lock:
            if self._next_nonce is None:
                self._next_nonce = self.web3.eth.get_transaction_count(self.account.address, 'pending')
            tx_params = {
                'from': self.account.address,
                'nonce': self._next_nonce,
            }
            if self.chain_id:
                tx_params['chainId'] = self.chain_id
            try:
                mint_txn = self.contract.functions.mint(to_address, token_uri).build_transaction(tx_params)
                signed_txn = self.account.sign_transaction(mint_txn)
                tx_hash = self.web3.eth.send_raw_transaction(signed_txn.raw_transaction)
            except Exception:
                self._next_nonce = None
                raise
            self._next_nonce += 1
        return tx_hash

    def mint(self, wallet_address, token_uri):
        try:
            validate_wallet_address(wallet_address)
            to_address = Web3.to_checksum_address(wallet_address)

            tx_hash = self._send_mint(to_address, token_uri)
            logger.info(f'Mint transaction sent with hash: {Web3.to_hex(tx_hash)}')

            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            if receipt['status'] != 1:
                raise MintError(f'Mint transaction reverted: {Web3.to_hex(tx_hash)}')
        except MintError:
            raise
        except Exception as e:
            raise MintError(f'Token minting failed: {e}')

        logger.info(f'Mint confirmed in block {receipt["blockNumber"]}')
        return MintReceipt(
            tx_hash=Web3.to_hex(receipt['transactionHash']),
            block_number=receipt['blockNumber'],
        )

    def status(self):
        try:
            balance = self.web3.eth.get_balance(self.account.address)
            gas_price = self.web3.eth.gas_price
        except Exception as e:
            raise MintError(f'Chain status unavailable: {e}')
        return {
            'minter_address': self.account.address,
            'balance_ether': str(self.web3.from_wei(balance, 'ether')),
            'balance_wei': balance,
            'gas_price_gwei': str(self.web3.from_wei(gas_price, 'gwei')),
            'contract_address': self.contract.address,
            'contract_name': self.probe(),
            'network_connected': True,
        }
