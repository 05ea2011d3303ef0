from __future__ import annotations

# python imports:
import logging
import socket
from typing import Type

# sieve_proto imports:
from transport import SyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


class SocketTransport ( SyncTransport ):
	sock: socket.socket

	def __init__ ( self, sock: socket.socket ) -> None:
		self.sock = sock

	@classmethod
	def connect ( cls: Type[SocketTransport], hostname: str, port: int ) -> SocketTransport:
		log = logger.getChild ( 'SocketTransport.connect' )

		for *params, _, address in socket.getaddrinfo ( hostname, port, type = socket.SOCK_STREAM ):
			sock = socket.socket ( *params )
			try:
				sock.connect ( address )
			except OSError as e:
				log.warning ( f'Error connecting to {address=}: {e!r}' )
				sock.close()
				continue
			else:
				log.debug ( f'connected to {address=}' )
				return cls ( sock )
		raise ConnectionError ( f'Unable to connect to {hostname=} {port=}' )

	def read ( self ) -> bytes:
		return self.sock.recv ( 4096 )

	def write ( self, data: BYTES ) -> None:
		self.sock.sendall ( data )

	def starttls_client ( self, server_hostname: str ) -> None:
		# the plain socket is handed over to the ssl wrapper, which owns it from now on
		context = self.ssl_context_or_default_client()

		self.sock = context.wrap_socket (
			self.sock,
			server_hostname = server_hostname,
		)

	def close ( self ) -> None:
		self.sock.close()
