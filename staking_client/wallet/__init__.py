from staking_client.wallet.signer import KeypairSigner, WalletSigner, load_keypair

__all__ = ["KeypairSigner", "WalletSigner", "load_keypair"]
