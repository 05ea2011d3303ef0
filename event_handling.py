from __future__ import annotations

# python imports:
from abc import ABCMeta
import contextlib
import logging
from typing import Iterator, Type

# sieve_proto imports:
from base_proto import (
	RequestType, ResponseType, Event, SendDataEvent, ClientProtocol, Closed,
)
from transport import SyncTransport
from util import b2s

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def _event_exception_safety ( event: Event ) -> Iterator[None]:
	try:
		yield
	except Exception as e:
		event.exc = e


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	try:
		yield
	except OSError as e:
		raise Closed ( repr ( e ) ) from e


class SyncEventHandler:
	transport: SyncTransport

	def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'SyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			if event.secret:
				log.debug ( 'C><redacted>' )
			else:
				log.debug ( f'C>{b2s(chunk,errors="replace").rstrip()}' )
			with close_if_oserror():
				self.transport.write ( chunk )

	def _on_event ( self, event: Event ) -> None:
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			func ( event )

	def close ( self ) -> None:
		self.transport.close()


class Client ( metaclass = ABCMeta ):
	protocls: Type[ClientProtocol]
	proto: ClientProtocol


class SyncClient ( SyncEventHandler, Client ):
	def __init__ ( self,
		transport: SyncTransport,
		tls: bool,
		server_hostname: str,
	) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( tls )

	def _request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		log = logger.getChild ( 'SyncClient._request' )
		for event in self.proto.send ( request ):
			self._on_event ( event )
		while request.base_response is None:
			with close_if_oserror():
				data: bytes = self.transport.read()
			log.debug ( f'S>{b2s(data,errors="replace").rstrip()}' )
			for event in self.proto.receive ( data ):
				self._on_event ( event )
		return request.response
