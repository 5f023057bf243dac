from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import requests
from loguru import logger

from liquidity_sniper.config import AppSettings


@dataclass(frozen=True)
class PurchaseRequest:
    target_token: str
    buy_amount_native: Decimal
    slippage: float
    deadline_secs: int

    @classmethod
    def for_token(cls, target_token: str, settings: AppSettings) -> PurchaseRequest:
        return cls(
            target_token=target_token,
            buy_amount_native=settings.buy_amount_bnb,
            slippage=settings.slippage,
            deadline_secs=settings.deadline_secs,
        )

    def to_payload(self) -> dict[str, Any]:
        # Wire field names are what the executor's BuyRequest deserializes
        return {
            "target_token": self.target_token,
            "buy_amount_bnb": str(self.buy_amount_native),
            "slippage": self.slippage,
            "deadline_secs": self.deadline_secs,
        }


class ExecutionRequestor:
    """Fire-and-forget client for the execution service's ``POST /buy``.

    Every failure is logged and swallowed: one request per call, no retry.
    """

    def __init__(self, settings: AppSettings):
        self.settings = settings
        self.buy_url = f"{settings.executor_url}/buy"

    def send(self, request: PurchaseRequest) -> Optional[Any]:
        payload = request.to_payload()
        if self.settings.dry_run:
            logger.info("[dry-run] Would POST {} {}", self.buy_url, payload)
            return None
        try:
            r = requests.post(self.buy_url, json=payload, timeout=self.settings.executor_timeout_sec)
        except requests.RequestException as e:
            logger.error("Error calling executor for {}: {}", request.target_token, e)
            return None
        if not r.ok:
            logger.error(
                "Executor rejected buy for {}: HTTP {} {}", request.target_token, r.status_code, r.text
            )
            return None
        try:
            data = r.json()
        except ValueError as e:
            logger.error("Executor response for {} is not JSON: {}", request.target_token, e)
            return None
        logger.info("Executor response for {}: {}", request.target_token, data)
        return data

    async def buy(self, target_token: str) -> Optional[Any]:
        request = PurchaseRequest.for_token(target_token, self.settings)
        logger.info("Requesting buy: {} for {} BNB", target_token, request.buy_amount_native)
        return await asyncio.to_thread(self.send, request)
