"""
Provider adapters.

Each adapter owns one httpx client and converts every transport or HTTP
failure into RelayError(EXTERNAL_PROVIDER).
"""
