# python imports:
import contextlib
import logging
from pathlib import Path
import sys
from typing import Iterable, Iterator, List
import unittest

if __name__=='__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# sieve_proto imports:
import base_proto

logger = logging.getLogger ( __name__ )

@contextlib.contextmanager
def quiet_logging ( quiet: bool = True ) -> Iterator[None]:
	try:
		if quiet:
			logging.disable ( logging.CRITICAL )
		yield None
	finally:
		if quiet:
			logging.disable ( logging.NOTSET )


class Echo ( base_proto.BaseResponse ):
	pass


class EchoRequest ( base_proto.RequestT[Echo] ):
	# echoes every line back; "#<n>" switches to reading n raw bytes, "." ends the request
	responsecls = Echo

	def _client_protocol ( self, client: base_proto.ClientProtocol ) -> base_proto.RequestProtocolGenerator:
		util = base_proto.ClientUtil()
		while True:
			line = yield from util.recv_line()
			if line.startswith ( b'#' ):
				data = yield from util.recv_exact ( int ( line[1:] ) )
				yield base_proto.SendDataEvent ( data )
			elif line.rstrip() == b'.':
				raise Echo()
			else:
				yield base_proto.SendDataEvent ( line )


class EchoClient ( base_proto.ClientProtocol ):
	_MAXLINE = 42


def echoed ( events: Iterable[base_proto.Event] ) -> List[bytes]:
	out: List[bytes] = []
	for event in events:
		assert isinstance ( event, base_proto.SendDataEvent ), f'unexpected {event=}'
		out.append ( b''.join ( map ( bytes, event.chunks ) ) )
	return out


class Tests ( unittest.TestCase ):
	def test_error_kinds ( self ) -> None:
		kinds = {
			base_proto.NetworkError: base_proto.ErrorKind.NETWORK,
			base_proto.Closed: base_proto.ErrorKind.NETWORK,
			base_proto.ResponseError: base_proto.ErrorKind.RESPONSE,
			base_proto.CommandError: base_proto.ErrorKind.COMMAND,
			base_proto.AuthError: base_proto.ErrorKind.AUTH,
			base_proto.UsageError: base_proto.ErrorKind.USAGE,
		}
		for cls, kind in kinds.items():
			e = cls ( 'boom' )
			self.assertIsInstance ( e, base_proto.SieveError )
			self.assertEqual ( e.kind, kind )
			self.assertEqual ( e.message, 'boom' )
		self.assertEqual ( repr ( base_proto.Closed() ), "Closed('(none given)')" )

	def test_line_and_literal_buffering ( self ) -> None:
		test = self
		cp = EchoClient ( False )
		request = EchoRequest()
		test.assertEqual ( echoed ( cp.send ( request ) ), [] )
		test.assertEqual ( echoed ( cp.receive ( b'foo\r' ) ), [] )
		test.assertEqual ( echoed ( cp.receive ( b'\nba' ) ), [
			b'foo\r\n',
		] )
		test.assertEqual ( echoed ( cp.receive ( b'ar\r\n#5\r\nab\r\ncd' ) ), [
			b'baar\r\n',
			b'ab\r\nc', # a literal ignores line endings
		] )
		test.assertEqual ( echoed ( cp.receive ( b'' ) ), [
			b'd',
		] )
		with test.assertRaises ( base_proto.Closed ):
			try:
				list ( cp.receive ( b'' ) )
			except base_proto.Closed as e:
				test.assertEqual ( repr ( e ), "Closed('EOF')" )
				raise
		test.assertIsNone ( request.base_response )

	def test_literal_split_across_reads ( self ) -> None:
		cp = EchoClient ( False )
		list ( cp.send ( EchoRequest() ) )
		self.assertEqual ( echoed ( cp.receive ( b'#4\r\n\r' ) ), [] )
		self.assertEqual ( echoed ( cp.receive ( b'\n' ) ), [] )
		self.assertEqual ( echoed ( cp.receive ( b'\0\nxyz\r\n' ) ), [
			b'\r\n\0\n',
			b'xyz\r\n',
		] )

	def test_eof_inside_literal ( self ) -> None:
		cp = EchoClient ( False )
		list ( cp.send ( EchoRequest() ) )
		list ( cp.receive ( b'#10\r\nshort' ) )
		with self.assertRaises ( base_proto.Closed ):
			list ( cp.receive ( b'' ) )
		self.assertIsNone ( cp.request )

	def test_response_finishes_request ( self ) -> None:
		cp = EchoClient ( False )
		request = EchoRequest()
		list ( cp.send ( request ) )
		self.assertEqual ( echoed ( cp.receive ( b'hi\r\n.\r\nleftover\r\n' ) ), [ b'hi\r\n' ] )
		self.assertIsInstance ( request.response, Echo )
		self.assertIsNone ( cp.request )

		# buffered input is handed to the next request as soon as it starts
		self.assertEqual ( echoed ( cp.send ( EchoRequest() ) ), [ b'leftover\r\n' ] )

	def test_maxline ( self ) -> None:
		cp = EchoClient ( False )
		list ( cp.send ( EchoRequest() ) )
		with self.assertRaises ( base_proto.Closed ):
			list ( cp.receive ( b'X' * cp._MAXLINE ) )

		# a literal may be as long as it likes
		cp = EchoClient ( False )
		list ( cp.send ( EchoRequest() ) )
		self.assertEqual ( echoed ( cp.receive ( b'#100\r\n' + b'Y' * 50 ) ), [] )
		self.assertEqual ( echoed ( cp.receive ( b'Y' * 50 ) ), [ b'Y' * 100 ] )

	def test_internal_errors ( self ) -> None:
		test = self

		class BadRequest ( base_proto.BaseRequest ):
			def _client_protocol ( self, client: base_proto.ClientProtocol ) -> base_proto.RequestProtocolGenerator:
				return super()._client_protocol ( client )
		with test.assertRaises ( NotImplementedError ):
			BadRequest()._client_protocol ( EchoClient ( False ) )

		class SilentRequest ( base_proto.BaseRequest ):
			def _client_protocol ( self, client: base_proto.ClientProtocol ) -> base_proto.RequestProtocolGenerator:
				yield from () # exits without raising a response
		cp = EchoClient ( False )
		with test.assertRaises ( base_proto.Closed ):
			try:
				with quiet_logging():
					list ( cp.send ( SilentRequest() ) )
			except base_proto.Closed as e:
				test.assertEqual ( repr ( e ), "Closed('INTERNAL ERROR - CLIENT PROTOCOLS MUST THROW THEIR RESPONSE')" )
				raise
		test.assertIsNone ( cp.request )

		class BuggyRequest ( base_proto.BaseRequest ):
			def _client_protocol ( self, client: base_proto.ClientProtocol ) -> base_proto.RequestProtocolGenerator:
				raise ValueError ( 'boom' )
				yield # pragma: no cover
		with test.assertRaises ( base_proto.Closed ):
			try:
				with quiet_logging():
					list ( EchoClient ( False ).send ( BuggyRequest() ) )
			except base_proto.Closed as e:
				test.assertEqual ( repr ( e ), '''Closed("ValueError('boom')")''' )
				raise

		class RefusingRequest ( base_proto.BaseRequest ):
			def _client_protocol ( self, client: base_proto.ClientProtocol ) -> base_proto.RequestProtocolGenerator:
				raise base_proto.UsageError ( 'nope' )
				yield # pragma: no cover
		with test.assertRaises ( base_proto.UsageError ):
			list ( EchoClient ( False ).send ( RefusingRequest() ) )

	def test_event_exception_is_thrown_into_request ( self ) -> None:
		cp = EchoClient ( False )
		list ( cp.send ( EchoRequest() ) )
		with self.assertRaises ( base_proto.Closed ):
			for event in cp.receive ( b'hello\r\n' ):
				event.exc = base_proto.Closed ( 'write failed' )
		self.assertIsNone ( cp.request )

	def test_secret_send_data_repr ( self ) -> None:
		self.assertEqual (
			repr ( base_proto.SendDataEvent ( b'LOGOUT\r\n' ) ),
			"base_proto.SendDataEvent(chunks=(b'LOGOUT\\r\\n',))",
		)
		self.assertEqual (
			repr ( base_proto.SendDataEvent ( b'"c2VjcmV0"\r\n', secret = True ) ),
			'base_proto.SendDataEvent(chunks=<redacted>)',
		)

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
