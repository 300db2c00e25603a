"""BallotBox contract gateway over web3.py.

Casts ballots by signing a ``castVote(electionId, candidateId)``
transaction from the voter's custodial wallet and waiting for it to be
mined. Every outcome is mapped onto a ChainResult:

- the contract already records a vote  -> ALREADY_VOTED (with the
  receipt rebuilt from the VoteCast log, when one is found)
- the contract refuses the call        -> REJECTED
- no receipt within the wait bound     -> NETWORK_ERROR (the vote may
  still land; the next attempt sees ALREADY_VOTED)
- transport failures                   -> NETWORK_ERROR

Web3Tally reads the per-election tally from the separate Tally contract.

web3's HTTP provider is blocking, so each call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from electra.chain.gateway import ChainOutcome, ChainResult
from electra.models.election import ElectionResults
from electra.models.vote import ChainReceipt

logger = logging.getLogger(__name__)


DEFAULT_CHAIN_ID = 11155111  # Sepolia

Signer = Callable[[str], Optional[Any]]


def signer_from_keys(private_keys: Iterable[str]) -> Signer:
    """Build a signer that looks up a LocalAccount by checksum address."""
    accounts = {}
    for key in private_keys:
        account = Account.from_key(key)
        accounts[account.address] = account
    return accounts.get


class Web3BallotBox:
    """ChainGateway backed by the BallotBox contract.

    Parameters (via *config* dict):
        chain_id                : int   — network chain ID (default 11155111)
        gas                     : int   — gas limit per cast (default 200000)
        gas_price_gwei          : str   — gas price (default "2")
        receipt_timeout_seconds : float — wait for mining (default 50)
    """

    def __init__(
        self,
        w3: Any,
        contract: Any,
        signer: Signer,
        config: dict,
    ) -> None:
        self._w3 = w3
        self._contract = contract
        self._signer = signer
        self._chain_id: int = config.get("chain_id", DEFAULT_CHAIN_ID)
        self._gas: int = config.get("gas", 200_000)
        self._gas_price_gwei: str = str(config.get("gas_price_gwei", "2"))
        self._receipt_timeout: float = config.get("receipt_timeout_seconds", 50.0)

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        contract_address: str,
        abi: list[dict[str, Any]],
        signer: Signer,
        config: dict,
    ) -> Web3BallotBox:
        w3 = Web3(HTTPProvider(rpc_url))
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=abi,
        )
        return cls(w3, contract, signer, config)

    async def cast_vote(
        self,
        election_id: str,
        candidate_id: str,
        voter_address: str,
    ) -> ChainResult:
        return await asyncio.to_thread(
            self._cast_blocking, election_id, candidate_id, voter_address,
        )

    async def has_voted(self, election_id: str, voter_address: str) -> bool:
        return await asyncio.to_thread(
            self._has_voted_blocking, election_id, voter_address,
        )

    async def find_vote(self, election_id: str, voter_address: str) -> Optional[ChainReceipt]:
        """Receipt of the vote the contract holds for this voter, if any."""
        return await asyncio.to_thread(
            self._find_vote, _as_uint(election_id), Web3.to_checksum_address(voter_address),
        )

    # ------------------------------------------------------------------
    # Blocking calls
    # ------------------------------------------------------------------

    def _has_voted_blocking(self, election_id: str, voter_address: str) -> bool:
        return bool(self._contract.functions.hasVoted(
            _as_uint(election_id), Web3.to_checksum_address(voter_address),
        ).call())

    def _cast_blocking(
        self,
        election_id: str,
        candidate_id: str,
        voter_address: str,
    ) -> ChainResult:
        try:
            eid = _as_uint(election_id)
            cid = _as_uint(candidate_id)
            voter = Web3.to_checksum_address(voter_address)
        except ValueError as exc:
            return ChainResult(outcome=ChainOutcome.REJECTED, error=str(exc))

        account = self._signer(voter)
        if account is None:
            return ChainResult(
                outcome=ChainOutcome.REJECTED, error=f"no signing key for {voter}",
            )

        try:
            if self._contract.functions.hasVoted(eid, voter).call():
                return ChainResult(
                    outcome=ChainOutcome.ALREADY_VOTED, receipt=self._find_vote(eid, voter),
                )

            cast = self._contract.functions.castVote(eid, cid)
            # Simulate first; a revert raises ContractLogicError
            cast.call({"from": voter})
            tx = cast.build_transaction({
                "from": account.address,
                "nonce": self._w3.eth.get_transaction_count(account.address),
                "chainId": self._chain_id,
                "gas": self._gas,
                "gasPrice": Web3.to_wei(self._gas_price_gwei, "gwei"),
            })
            signed = account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Sent vote tx %s for election %d", Web3.to_hex(tx_hash), eid)

            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
            if receipt["status"] != 1:
                return ChainResult(
                    outcome=ChainOutcome.REJECTED,
                    error=f"transaction {Web3.to_hex(tx_hash)} reverted",
                )
            return ChainResult(
                outcome=ChainOutcome.CONFIRMED,
                receipt=ChainReceipt(
                    transaction_hash=Web3.to_hex(tx_hash),
                    election_id=election_id,
                    candidate_id=candidate_id,
                    voter_address=voter,
                    block_timestamp_utc=self._block_time(receipt["blockNumber"]),
                ),
            )
        except ContractLogicError as exc:
            reason = exc.message or str(exc)
            if "already voted" in reason.lower():
                return ChainResult(
                    outcome=ChainOutcome.ALREADY_VOTED, receipt=self._find_vote(eid, voter),
                )
            return ChainResult(
                outcome=ChainOutcome.REJECTED, error=f"contract refused vote: {reason}",
            )
        except TimeExhausted as exc:
            logger.warning("No receipt for election %d vote by %s: %s", eid, voter, exc)
            return ChainResult(outcome=ChainOutcome.NETWORK_ERROR, error=str(exc))
        except Exception as exc:
            logger.warning("RPC failure casting election %d vote by %s: %s", eid, voter, exc)
            return ChainResult(outcome=ChainOutcome.NETWORK_ERROR, error=str(exc))

    def _find_vote(self, election_id: int, voter: str) -> Optional[ChainReceipt]:
        logs = self._contract.events.VoteCast.get_logs(
            argument_filters={"electionId": election_id, "voter": voter},
            from_block=0,
        )
        if not logs:
            return None
        log = logs[-1]
        args = log["args"]
        return ChainReceipt(
            transaction_hash=Web3.to_hex(log["transactionHash"]),
            election_id=str(args["electionId"]),
            candidate_id=str(args["candidateId"]),
            voter_address=args["voter"],
            block_timestamp_utc=self._block_time(log["blockNumber"]),
        )

    def _block_time(self, block_number: int) -> str:
        timestamp = self._w3.eth.get_block(block_number)["timestamp"]
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Web3Tally:
    """Read-only view of the Tally contract."""

    def __init__(self, contract: Any) -> None:
        self._contract = contract

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        contract_address: str,
        abi: list[dict[str, Any]],
    ) -> Web3Tally:
        w3 = Web3(HTTPProvider(rpc_url))
        return cls(w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=abi,
        ))

    async def results(self, election_id: str) -> ElectionResults:
        """Current tally for *election_id*.

        Raises:
            ValueError: non-numeric id or a malformed tally.
        """
        return await asyncio.to_thread(self._results_blocking, election_id)

    def _results_blocking(self, election_id: str) -> ElectionResults:
        eid = _as_uint(election_id)
        finalized, total, winner, candidate_ids, vote_counts = (
            self._contract.functions.getResults(eid).call()
        )
        results = ElectionResults(
            election_id=election_id,
            is_finalized=bool(finalized),
            total_votes=int(total),
            winning_candidate_id=str(winner),
            candidate_ids=tuple(str(c) for c in candidate_ids),
            vote_counts=tuple(int(n) for n in vote_counts),
        )
        if results.is_finalized and sum(results.vote_counts) != results.total_votes:
            logger.warning(
                "Finalized tally for election %d sums to %d, contract reports %d",
                eid, sum(results.vote_counts), results.total_votes,
            )
        return results


def _as_uint(value: str) -> int:
    if not value.isdigit():
        raise ValueError(f"contract ids are unsigned integers, got {value!r}")
    return int(value)
