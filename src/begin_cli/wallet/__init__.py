"""Cardano wallet system for begin-cli.

Provides an encrypted keystore of named wallets, BIP-39 seed phrases and
CIP-1852 address derivation for mainnet and the test networks.
"""
