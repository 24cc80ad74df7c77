"""Tests for keypair loading and the headless signer."""

from __future__ import annotations

import asyncio
import json

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from staking_client.core.exceptions import ConfigError
from staking_client.wallet.signer import KeypairSigner, load_keypair


def test_load_keypair_from_json_array():
    keypair = Keypair()
    loaded = load_keypair(json.dumps(list(bytes(keypair))))
    assert loaded.pubkey() == keypair.pubkey()


def test_load_keypair_from_base58():
    keypair = Keypair()
    loaded = load_keypair(base58.b58encode(bytes(keypair)).decode())
    assert loaded.pubkey() == keypair.pubkey()


def test_load_keypair_rejects_garbage():
    with pytest.raises(ConfigError):
        load_keypair("definitely not a key")


def test_keypair_signer_signs_message():
    keypair = Keypair()
    signer = KeypairSigner(keypair)
    ix = transfer(TransferParams(from_pubkey=keypair.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))
    message = MessageV0.try_compile(keypair.pubkey(), [ix], [], Hash.new_unique())
    tx = asyncio.run(signer.sign(message))
    assert signer.address == keypair.pubkey()
    assert len(tx.signatures) == 1
    assert tx.signatures[0] != Signature.default()
