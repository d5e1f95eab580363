"""Clients for remote services: chain data, swap aggregation and NFT minting."""
