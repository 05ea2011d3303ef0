#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
import re
from typing import (
	Callable, Dict, Generator, Iterable, List, Optional as Opt,
	Sequence as Seq, Tuple, Type, Union,
)

# 3rd-party imports:
import packaging.version

# sieve_proto imports:
from base_proto import (
	BaseResponse, ResponseType, RequestT, Event, ClientProtocol,
	RequestProtocolGenerator, ClientUtil, ResponseError, CommandError,
	AuthError, UsageError,
)
from util import BYTES, b2s, s2b, b64_encode, b64_encode_str, chomp

__version__ = packaging.version.parse ( '0.1.0' )

logger = logging.getLogger ( __name__ )

SIEVE_PORT = 4190

_r_ok = re.compile ( r'^OK\b(.*)$' )
_r_error = re.compile ( r'^(NO|BYE)\b(.*)$' )
_r_quoted = re.compile ( r'"([^"]*)"(?:\s"?([^"]*)"?)?$' )
_r_literal = re.compile ( r'\{(\d+)\+?\}' )
_r_bad_name = re.compile ( r'["\\\r\n\0]' )

#endregion
#region FRAGMENTS -------------------------------------------------------------

class Fragment ( metaclass = ABCMeta ):
	flag: str # kind of fragment, one of ok, error, quoted, literal or other

	@abstractmethod
	def _args ( self ) -> Tuple[object,...]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._args()' )

	@property
	def payload ( self ) -> object:
		args = self._args()
		return args[0] if len ( args ) == 1 else args

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({", ".join(map(repr,self._args()))})'


class OkFragment ( Fragment ):
	flag = 'ok'

	def __init__ ( self, detail: str ) -> None:
		self.detail = detail

	def _args ( self ) -> Tuple[object,...]:
		return ( self.detail, )


class ErrorFragment ( Fragment ):
	flag = 'error'

	def __init__ ( self, message: str ) -> None:
		self.message = message

	@classmethod
	def from_literal ( cls, data: bytes ) -> ErrorFragment:
		return cls ( b2s ( data, errors = 'replace' ) )

	def _args ( self ) -> Tuple[object,...]:
		return ( self.message, )


class QuotedFragment ( Fragment ):
	flag = 'quoted'

	def __init__ ( self, primary: str, secondary: Opt[str] = None ) -> None:
		self.primary = primary
		self.secondary = secondary

	def _args ( self ) -> Tuple[object,...]:
		return ( self.primary, self.secondary )


class LiteralFragment ( Fragment ):
	flag = 'literal'

	def __init__ ( self, data: bytes ) -> None:
		self.data = data # raw, including the line terminator that follows the literal

	@classmethod
	def from_literal ( cls, data: bytes ) -> LiteralFragment:
		return cls ( data )

	def _args ( self ) -> Tuple[object,...]:
		return ( self.data, )


class OtherFragment ( Fragment ):
	flag = 'other'

	def __init__ ( self, line: str ) -> None:
		self.line = line

	def _args ( self ) -> Tuple[object,...]:
		return ( self.line, )


# (fragment class, captured text, size of the literal that follows or None)
ParsedLine = Tuple[Type[Fragment],Tuple[Opt[str],...],Opt[int]]
LineRule = Callable[[str],Opt[ParsedLine]]

def _rule_ok ( line: str ) -> Opt[ParsedLine]:
	m = _r_ok.match ( line )
	return ( OkFragment, ( m.group ( 1 ).strip(), ), None ) if m else None

def _rule_error ( line: str ) -> Opt[ParsedLine]:
	m = _r_error.match ( line )
	if not m:
		return None
	text = m.group ( 2 )
	m2 = _r_literal.search ( text )
	return ( ErrorFragment, ( text, ), int ( m2.group ( 1 ) ) if m2 else None )

def _rule_quoted ( line: str ) -> Opt[ParsedLine]:
	m = _r_quoted.search ( line )
	return ( QuotedFragment, m.groups(), None ) if m else None

def _rule_literal ( line: str ) -> Opt[ParsedLine]:
	m = _r_literal.search ( line )
	return ( LiteralFragment, (), int ( m.group ( 1 ) ) ) if m else None

# order matters: an error line may announce its own literal payload
_line_rules: Seq[LineRule] = ( _rule_ok, _rule_error, _rule_quoted, _rule_literal )


def parse_line ( line: str ) -> ParsedLine:
	for rule in _line_rules:
		parsed = rule ( line )
		if parsed is not None:
			return parsed
	return OtherFragment, ( line, ), None


def _error_text ( message: str ) -> str:
	text = message.strip().replace ( '\r\n', ' ' )
	if len ( text ) >= 2 and text[0] == text[-1] == '"':
		text = text[1:-1]
	return text

#endregion
#region RESPONSES -------------------------------------------------------------

class Response ( BaseResponse ):
	def __init__ ( self, detail: str, *fragments: Fragment ) -> None:
		self.detail = detail
		self.fragments = fragments
		super().__init__()

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({", ".join(map(repr,(self.detail,*self.fragments)))})'


class Capabilities:
	'''
	Features announced by the server in its greeting, in response to
	CAPABILITY and again after STARTTLS.
	'''
	implementation: Opt[str]
	sasl: List[str]
	sieve: List[str]
	starttls: bool

	def __init__ ( self ) -> None:
		self.features: Dict[str,Opt[str]] = {}
		self.implementation = None
		self.sasl = []
		self.sieve = []
		self.starttls = False

	@classmethod
	def parse ( cls, fragments: Iterable[Fragment] ) -> Capabilities:
		self = cls()
		for fragment in fragments:
			if not isinstance ( fragment, QuotedFragment ):
				continue
			name = fragment.primary.upper()
			value = fragment.secondary
			self.features[name] = value
			if name == 'IMPLEMENTATION':
				self.implementation = value or ''
			elif name == 'SASL':
				self.sasl = ( value or '' ).split()
			elif name == 'SIEVE':
				self.sieve = ( value or '' ).split()
			elif name == 'STARTTLS':
				self.starttls = True
			# anything else is an extension we don't know about
		return self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return (
			f'{cls.__module__}.{cls.__name__}('
			f'implementation={self.implementation!r}, sasl={self.sasl!r},'
			f' sieve={self.sieve!r}, starttls={self.starttls!r})'
		)


class CapabilityResponse ( Response ):
	def __init__ ( self, detail: str, *fragments: Fragment ) -> None:
		super().__init__ ( detail, *fragments )
		self.capabilities = Capabilities.parse ( fragments )


class ScriptListResponse ( Response ):
	def __init__ ( self, detail: str, *fragments: Fragment ) -> None:
		super().__init__ ( detail, *fragments )
		self.scripts: List[Tuple[str,bool]] = [
			( fragment.primary, ( fragment.secondary or '' ).upper() == 'ACTIVE' )
			for fragment in fragments
			if isinstance ( fragment, QuotedFragment )
		]


class ScriptResponse ( Response ):
	def __init__ ( self, detail: str, *fragments: Fragment ) -> None:
		super().__init__ ( detail, *fragments )
		self.data: bytes = chomp ( b''.join (
			fragment.data for fragment in fragments
			if isinstance ( fragment, LiteralFragment )
		) )

	@property
	def script ( self ) -> str:
		try:
			return b2s ( self.data )
		except UnicodeDecodeError as e:
			raise CommandError ( f'GETSCRIPT: script is not valid UTF-8: {e.reason} at byte {e.start}' ) from e

#endregion
#region READER & DISPATCHER ---------------------------------------------------

def quote_name ( name: str ) -> str:
	return f'"{name}"'

def literal ( data: BYTES ) -> bytes:
	data = bytes ( data )
	return s2b ( f'{{{len(data)}+}}\r\n' ) + data


class SieveUtil ( ClientUtil ):
	def read_fragment ( self ) -> Generator[Event,None,Fragment]:
		line = b2s ( ( yield from self.recv_line() ), errors = 'replace' ).rstrip ( '\r\n' )
		fragmentcls, args, size = parse_line ( line )
		if size is None:
			return fragmentcls ( *args ) # type: ignore
		# the length is authoritative, whatever the literal contains
		data = yield from self.recv_exact ( size + 2 )
		return fragmentcls.from_literal ( data ) # type: ignore

	def recv_response ( self ) -> Generator[Event,None,Response]:
		fragments: List[Fragment] = []
		while True:
			fragment = yield from self.read_fragment()
			if isinstance ( fragment, OkFragment ):
				return Response ( fragment.detail, *fragments )
			if isinstance ( fragment, ErrorFragment ):
				raise ResponseError ( _error_text ( fragment.message ) )
			fragments.append ( fragment )

	def await_response ( self, context: str ) -> Generator[Event,None,Response]:
		try:
			return ( yield from self.recv_response() )
		except ResponseError as e:
			raise CommandError ( f'{context}: {e.message}' ) from e

	def command ( self,
		verb: str,
		*args: Union[str,bytes],
		wait_response: bool = True,
		context: Opt[str] = None,
		secret: bool = False,
	) -> Generator[Event,None,Opt[Response]]:
		line = b' '.join ( s2b ( arg ) if isinstance ( arg, str ) else arg for arg in ( verb, *args ) )
		yield from self.send ( line + b'\r\n', secret = secret )
		if not wait_response:
			return None
		return ( yield from self.await_response ( context or verb ) )

	def command_done ( self, verb: str, *args: Union[str,bytes] ) -> RequestProtocolGenerator:
		response = yield from self.command ( verb, *args )
		assert response is not None
		raise response


client_util = SieveUtil()

#endregion
#region EVENTS ----------------------------------------------------------------

class StartTlsBeginEvent ( Event ):
	pass

#endregion
#region REQUESTS --------------------------------------------------------------

def _script_name ( name: Opt[str], required: bool = True ) -> str:
	if name is None or name == '':
		if required:
			raise UsageError ( 'script name is required' )
		return ''
	if not isinstance ( name, str ) or _r_bad_name.search ( name ):
		raise UsageError ( f'invalid script name {name!r}' )
	return name


class Request ( RequestT[ResponseType] ):
	def _client_protocol ( self, client: ClientProtocol ) -> RequestProtocolGenerator:
		assert isinstance ( client, Client )
		yield from self.client_protocol ( client )

	@abstractmethod
	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.client_protocol()' )


class GreetingRequest ( Request[CapabilityResponse] ):
	responsecls = CapabilityResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		response = yield from client_util.await_response ( 'greeting' )
		raise CapabilityResponse ( response.detail, *response.fragments )


class CapabilityRequest ( Request[CapabilityResponse] ):
	responsecls = CapabilityResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		response = yield from client_util.command ( 'CAPABILITY' )
		assert response is not None
		raise CapabilityResponse ( response.detail, *response.fragments )


class StartTlsRequest ( Request[CapabilityResponse] ): # RFC5804#2.2
	responsecls = CapabilityResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'StartTlsRequest.client_protocol' )
		if client.tls:
			raise UsageError ( 'TLS is already active' )
		yield from client_util.command ( 'STARTTLS' )
		yield from StartTlsBeginEvent().go()
		client.tls = True
		log.debug ( 'TLS negotiated, waiting for new capabilities' )
		response = yield from client_util.await_response ( 'STARTTLS' )
		raise CapabilityResponse ( response.detail, *response.fragments )


_auth_plugins: Dict[str,Type[AuthRequest]] = {}

def auth_plugin ( name: str ) -> Callable[[Type[AuthRequest]],Type[AuthRequest]]:
	def registrar ( cls: Type[AuthRequest] ) -> Type[AuthRequest]:
		assert name == name.upper() and ' ' not in name, f'invalid auth mechanism {name=}'
		assert name not in _auth_plugins, f'duplicate auth mechanism {name!r}'
		_auth_plugins[name] = cls
		cls.mechanism = name
		return cls
	return registrar

def auth_mechanisms() -> List[str]:
	return sorted ( _auth_plugins )

def auth_request ( mechanism: str, euser: str, user: str, password: BYTES ) -> AuthRequest:
	plugincls = _auth_plugins.get ( mechanism.upper() )
	if plugincls is None:
		raise AuthError ( f'{mechanism} authentication is not implemented' )
	return plugincls ( euser, user, password )


class AuthRequest ( Request[Response] ):
	responsecls = Response
	mechanism: str

	def __init__ ( self, euser: str, user: str, password: BYTES ) -> None:
		self.euser = euser
		self.user = user
		self.password = password # not copied, the owner wipes it when we're done

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(euser={self.euser!r}, user={self.user!r})'


@auth_plugin ( 'PLAIN' )
class AuthPlainRequest ( AuthRequest ): # RFC4616

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		blob = bytearray ( s2b ( self.euser ) )
		blob += b'\0' + s2b ( self.user ) + b'\0'
		blob += self.password
		try:
			authtext = b64_encode ( blob )
		finally:
			blob[:] = bytes ( len ( blob ) )
		response = yield from client_util.command (
			'AUTHENTICATE', quote_name ( 'PLAIN' ), quote_name ( authtext ),
			secret = True,
		)
		assert response is not None
		raise response


@auth_plugin ( 'LOGIN' )
class AuthLoginRequest ( AuthRequest ):
	# NOTE: the server's challenges are not inspected, they are read back as
	# quoted fragments by the final response

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command ( 'AUTHENTICATE', quote_name ( 'LOGIN' ), wait_response = False )
		yield from client_util.command ( quote_name ( b64_encode_str ( self.user ) ), wait_response = False )
		response = yield from client_util.command (
			quote_name ( b64_encode ( self.password ) ),
			context = 'AUTHENTICATE',
			secret = True,
		)
		assert response is not None
		raise response


class ListScriptsRequest ( Request[ScriptListResponse] ):
	responsecls = ScriptListResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		response = yield from client_util.command ( 'LISTSCRIPTS' )
		assert response is not None
		raise ScriptListResponse ( response.detail, *response.fragments )


class GetScriptRequest ( Request[ScriptResponse] ):
	responsecls = ScriptResponse

	def __init__ ( self, name: str ) -> None:
		self.name = _script_name ( name )

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		response = yield from client_util.command ( 'GETSCRIPT', quote_name ( self.name ) )
		assert response is not None
		raise ScriptResponse ( response.detail, *response.fragments )


class PutScriptRequest ( Request[Response] ):
	responsecls = Response

	def __init__ ( self, name: str, content: Union[str,BYTES] ) -> None:
		self.name = _script_name ( name )
		if isinstance ( content, str ):
			self.content = s2b ( content )
		elif isinstance ( content, ( bytes, bytearray, memoryview ) ):
			self.content = bytes ( content )
		else:
			raise UsageError ( f'invalid script content {content!r}' )
		try:
			b2s ( self.content )
		except UnicodeDecodeError as e:
			raise UsageError ( f'script content is not valid UTF-8: {e.reason} at byte {e.start}' ) from e

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command_done ( 'PUTSCRIPT', quote_name ( self.name ), literal ( self.content ) )


class DeleteScriptRequest ( Request[Response] ):
	responsecls = Response

	def __init__ ( self, name: str ) -> None:
		self.name = _script_name ( name )

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command_done ( 'DELETESCRIPT', quote_name ( self.name ) )


class SetActiveRequest ( Request[Response] ):
	responsecls = Response

	def __init__ ( self, name: Opt[str] ) -> None:
		self.name = _script_name ( name, required = False ) # empty name deactivates

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command_done ( 'SETACTIVE', quote_name ( self.name ) )


class HaveSpaceRequest ( Request[Response] ):
	responsecls = Response

	def __init__ ( self, name: str, size: int ) -> None:
		self.name = _script_name ( name )
		if isinstance ( size, bool ) or not isinstance ( size, int ) or size < 0:
			raise UsageError ( f'invalid script {size=}' )
		self.size = size

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command_done ( 'HAVESPACE', quote_name ( self.name ), str ( self.size ) )


class LogoutRequest ( Request[Response] ):
	responsecls = Response

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.command_done ( 'LOGOUT' )

#endregion
#region CLIENT ----------------------------------------------------------------

class Client ( ClientProtocol ):
	_MAXLINE = 8192

#endregion
