"""Receive flow datagrams, convert NetFlow v5/v9, IPFIX and sFlow packets into flow messages, format and send them."""

__version__ = "2.0.0"