from __future__ import annotations

# python imports:
import ssl
from typing import Optional as Opt, Type

# sieve_proto imports:
from event_handling import close_if_oserror
import sieve_sync
from sieve_sync import ConnectionInfo, TlsPolicy
from transport_socket import SocketTransport as Transport

__all__ = [ 'Client', 'ConnectionInfo', 'TlsPolicy', 'Transport' ]

class Client ( sieve_sync.Client ):
	@classmethod
	def connect ( cls: Type[Client],
		info: ConnectionInfo,
		ssl_context: Opt[ssl.SSLContext] = None,
	) -> Client:
		with close_if_oserror():
			transport = Transport.connect ( info.host, info.port )
		transport.ssl_context = ssl_context
		self = cls ( transport, info )
		self.open()
		return self
