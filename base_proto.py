from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import enum
import logging
from typing import (
	Generator, Generic, Iterator, Optional as Opt, Sequence as Seq, Type,
	TypeVar,
)

# sieve_proto imports:
from util import bytes_types, BYTES

logger = logging.getLogger ( __name__ )

#region ERRORS ----------------------------------------------------------------

class ErrorKind ( enum.Enum ):
	NETWORK = 'network'
	RESPONSE = 'response'
	COMMAND = 'command'
	AUTH = 'auth'
	USAGE = 'usage'


class SieveError ( Exception ):
	kind: ErrorKind

	def __init__ ( self, message: str = '' ) -> None:
		self.message = message or '(none given)'
		super().__init__ ( self.message )


class NetworkError ( SieveError ):
	kind = ErrorKind.NETWORK


class Closed ( NetworkError ):
	pass


class ResponseError ( SieveError ): # server said NO or BYE
	kind = ErrorKind.RESPONSE


class CommandError ( SieveError ):
	kind = ErrorKind.COMMAND


class AuthError ( SieveError ):
	kind = ErrorKind.AUTH


class UsageError ( SieveError ):
	kind = ErrorKind.USAGE

#endregion
#region EVENTS ----------------------------------------------------------------

class Event ( Exception ):
	exc: Opt[BaseException] = None

	def go ( self ) -> Iterator[Event]:
		yield self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


class NeedDataEvent ( Event ):
	data: Opt[bytes] = None
	size: Opt[int] = None # None means "one line", otherwise an exact byte count

	def reset ( self ) -> NeedDataEvent:
		self.data = None
		return self

	def go ( self ) -> Iterator[Event]:
		self.reset()
		yield from super().go()


class SendDataEvent ( Event ):

	def __init__ ( self, *chunks: BYTES, secret: bool = False ) -> None:
		self.chunks: Seq[BYTES] = chunks
		self.secret = secret

	def __repr__ ( self ) -> str:
		cls = type ( self )
		chunks = '<redacted>' if self.secret else repr ( self.chunks )
		return f'{cls.__module__}.{cls.__name__}(chunks={chunks})'

#endregion
#region REQUESTS --------------------------------------------------------------

class BaseResponse ( Exception ):
	pass

ResponseType = TypeVar ( 'ResponseType', bound = BaseResponse )


RequestProtocolGenerator = Generator[Event,None,None]


class BaseRequest ( metaclass = ABCMeta ):
	# 1) client uses __init__() to construct request
	# 2) _client_protocol() implements the client-side state machine
	# 3) the state machine finishes by raising its response
	base_response: Opt[BaseResponse] = None

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'

	@abstractmethod
	def _client_protocol ( self, client: ClientProtocol ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._client_protocol()' )


class RequestT ( BaseRequest, Generic[ResponseType] ):
	responsecls: Type[ResponseType]

	@property
	def response ( self ) -> ResponseType:
		assert isinstance ( self.base_response, self.responsecls )
		return self.base_response
RequestType = RequestT[ResponseType]

#endregion
#region PROTOCOL --------------------------------------------------------------

class Protocol ( metaclass = ABCMeta ):
	_buf: bytes = b''
	request: Opt[BaseRequest] = None
	request_protocol: Opt[RequestProtocolGenerator] = None
	need_data: Opt[NeedDataEvent] = None
	tls: bool # whether or not the connection is currently encrypted
	_MAXLINE: int

	def __init__ ( self, tls: bool ) -> None:
		self.tls = tls

	def receive ( self, data: bytes ) -> Iterator[Event]:
		assert isinstance ( data, bytes_types ), f'invalid {data=}'
		if not data: # EOF indicator
			if self._buf and self.need_data is not None and self.need_data.size is None:
				buf, self._buf = self._buf, b''
				yield from self._receive_line ( buf )
				return
			self._abandon()
			raise Closed ( 'EOF' )
		self._buf += bytes ( data )
		yield from self._drain()

	def _drain ( self ) -> Iterator[Event]:
		# hand buffered input to whoever is waiting: a whole line, or exactly
		# `size` bytes when a literal is being read
		start = 0
		try:
			while self.need_data is not None:
				size = self.need_data.size
				if size is None:
					end = self._buf.find ( b'\n', start ) + 1
					if not end:
						break
				elif len ( self._buf ) - start >= size:
					end = start + size
				else:
					break
				chunk = self._buf[start:end]
				start = end
				yield from self._receive_line ( chunk )
		finally:
			if start:
				self._buf = self._buf[start:]
		if (
			self.need_data is not None
			and self.need_data.size is None
			and len ( self._buf ) >= self._MAXLINE
		):
			self._abandon()
			raise Closed ( 'maximum line length exceeded' )

	def _abandon ( self ) -> None:
		self.request = None
		self.request_protocol = None
		self.need_data = None

	@abstractmethod
	def _receive_line ( self, line: bytes ) -> Iterator[Event]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._receive_line()' )

	def _run_protocol ( self ) -> Iterator[Event]:
		log = logger.getChild ( 'Protocol._run_protocol' )
		assert self.request is not None, f'invalid {self.request=}'
		assert self.request_protocol is not None, f'invalid {self.request_protocol=}'
		request = self.request
		try:
			event = next ( self.request_protocol )
			while True:
				log.debug ( f'{event=}' )
				if isinstance ( event, NeedDataEvent ):
					self.need_data = event
					return
				yield event
				if event.exc is not None:
					exc, event.exc = event.exc, None
					event = self.request_protocol.throw ( exc )
				else:
					event = next ( self.request_protocol )
		except BaseResponse as response:
			self._abandon()
			request.base_response = response
		except SieveError:
			self._abandon()
			raise
		except StopIteration:
			# client protocols *must* raise their response before exiting,
			# otherwise the caller would wait for data that never arrives
			self._abandon()
			log.warning (
				f'INTERNAL ERROR:'
				f' {type(request).__module__}.{type(request).__name__}'
				f'._client_protocol() exit w/o response'
			)
			raise Closed ( 'INTERNAL ERROR - CLIENT PROTOCOLS MUST THROW THEIR RESPONSE' )
		except Exception as e:
			self._abandon()
			log.exception ( 'internal protocol error:' )
			raise Closed ( repr ( e ) ) from e


class ClientProtocol ( Protocol ):
	def send ( self, request: BaseRequest ) -> Iterator[Event]:
		assert self.request is None, f'trying to send {request=} but not finished processing {self.request=}'
		self.request = request
		self.request_protocol = request._client_protocol ( self )
		yield from self._run_protocol()
		# input left over from an earlier exchange belongs to this request
		yield from self._drain()

	def _receive_line ( self, line: bytes ) -> Iterator[Event]:
		assert self.need_data, f'not expecting data at this time ({bytes(line)!r})'
		self.need_data.data = line
		self.need_data = None
		yield from self._run_protocol()

#endregion
#region client protocol helpers

class ClientUtil:
	def send ( self, data: BYTES, *, secret: bool = False ) -> Iterator[Event]:
		assert bytes ( data[-2:] ) == b'\r\n', f'invalid {data=}'
		yield from SendDataEvent ( data, secret = secret ).go()

	def recv_line ( self ) -> Generator[Event,None,bytes]:
		yield from ( event := NeedDataEvent() ).go()
		return event.data or b''

	def recv_exact ( self, size: int ) -> Generator[Event,None,bytes]:
		assert size >= 0, f'invalid {size=}'
		event = NeedDataEvent()
		event.size = size
		yield from event.go()
		return event.data or b''

#endregion client protocol helpers
