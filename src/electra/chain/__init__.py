"""Chain access: the ballot-box gateway protocol and its web3 implementation."""
