"""
Miner Agent
===========

The daemon that runs on a worker's machine.

What it does:
  1. Bind this device (host id + device id + wallet) to the coordinator
  2. Keep asking the coordinator whether this host is enabled / GPU-verified
  3. While authorized, mine shares: search for a nonce whose SHA-256 meets a
     fractional difficulty, then report the share
  4. While authorized, claim inference jobs one at a time, run them on the
     local generation backend, and report each result (or error) exactly once

Both loops run side by side and share nothing but the read-only config.
Network failures never stop a loop; they just back it off. The only thing
that stops the process at startup is a missing wallet.

Requirements:
  pip install requests pynvml

Usage:
  WALLET=<your-wallet> python -m miner_agent.agent --coord http://coordinator:8787
"""
