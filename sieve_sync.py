from __future__ import annotations

# python imports:
import enum
import logging
from typing import List, Optional as Opt, Tuple, Union

# sieve_proto imports:
from base_proto import (
	AuthError, CommandError, NetworkError, UsageError, RequestType, ResponseType,
)
from event_handling import SyncClient, close_if_oserror
import sieve_proto as proto
from transport import SyncTransport
from util import BYTES, bytes_types, s2b

logger = logging.getLogger ( __name__ )


class TlsPolicy ( enum.Enum ):
	AUTO = 'auto' # upgrade whenever the server offers STARTTLS
	REQUIRE = 'require'
	DISABLE = 'disable'


class ConnectionInfo:
	'''
	Everything needed to open and authenticate a session. The password is kept
	in a bytearray so whoever takes it over can wipe it.
	'''
	def __init__ ( self, *,
		host: str,
		user: str,
		password: Union[str,BYTES],
		port: int = proto.SIEVE_PORT,
		euser: Opt[str] = None,
		auth: str = 'PLAIN',
		tls: TlsPolicy = TlsPolicy.AUTO,
	) -> None:
		if not isinstance ( tls, TlsPolicy ):
			raise UsageError ( f'invalid TLS policy {tls!r}' )
		if not isinstance ( password, ( str, *bytes_types ) ):
			raise UsageError ( f'password must be str or bytes, not {type(password).__name__}' )
		self.host = host
		self.port = port
		self.user = user
		self.euser = euser or user
		self.auth = auth
		self.tls = tls
		self.password: Opt[bytearray] = bytearray (
			s2b ( password ) if isinstance ( password, str ) else password
		)

	def take_password ( self ) -> Opt[bytearray]:
		password, self.password = self.password, None
		return password

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return (
			f'{cls.__module__}.{cls.__name__}(host={self.host!r}, port={self.port!r},'
			f' user={self.user!r}, euser={self.euser!r}, auth={self.auth!r}, tls={self.tls!r})'
		)


class Client ( SyncClient ):
	protocls = proto.Client

	def __init__ ( self, transport: SyncTransport, info: ConnectionInfo ) -> None:
		super().__init__ ( transport, False, info.host )
		self.host = info.host
		self.port = info.port
		self.user = info.user
		self.euser = info.euser
		self.auth_mech = info.auth
		self.tls_policy = info.tls
		self._password: Opt[bytearray] = info.take_password()
		self.features = proto.Capabilities()
		self.capabilities: List[str] = []
		self.login_mechs: List[str] = []
		self.implementation = ''
		self._supports_tls = False
		self._auth_attempted = False
		self.authenticated = False

	@property
	def tls ( self ) -> bool:
		return self.proto.tls

	def supports_tls ( self ) -> bool:
		return self._supports_tls

	def open ( self ) -> None:
		log = logger.getChild ( 'Client.open' )
		try:
			self.greeting()
			if self.tls_policy is TlsPolicy.REQUIRE and not self.supports_tls():
				raise NetworkError ( 'Server does not support TLS' )
			if self.tls_policy is not TlsPolicy.DISABLE and self.supports_tls():
				self.starttls()
			self.authenticate()
		except Exception as e:
			log.debug ( f'session setup failed, closing: {e!r}' )
			self._wipe_password()
			self.close()
			raise

	def _negotiate ( self, response: proto.CapabilityResponse ) -> proto.Capabilities:
		log = logger.getChild ( 'Client._negotiate' )
		caps = response.capabilities
		self.features = caps
		self.implementation = caps.implementation or ''
		self.login_mechs = list ( caps.sasl )
		self.capabilities = list ( caps.sieve )
		if caps.starttls:
			self._supports_tls = True
		log.debug ( f'{caps=}' )
		return caps

	def greeting ( self ) -> proto.Capabilities:
		return self._negotiate ( self._request ( proto.GreetingRequest() ) )

	def capability ( self ) -> proto.Capabilities:
		return self._negotiate ( self._request ( proto.CapabilityRequest() ) )

	def starttls ( self ) -> proto.Capabilities:
		return self._negotiate ( self._request ( proto.StartTlsRequest() ) )

	def authenticate ( self ) -> None:
		log = logger.getChild ( 'Client.authenticate' )
		if self._auth_attempted:
			raise UsageError ( 'authentication was already attempted on this connection' )
		self._auth_attempted = True
		try:
			mech = self.auth_mech
			if mech.upper() not in { m.upper() for m in self.login_mechs }:
				raise AuthError ( f"Server doesn't allow {mech} authentication" )
			if self._password is None:
				raise UsageError ( 'no password available' )
			request = proto.auth_request ( mech, self.euser, self.user, self._password )
			self._request ( request )
			self.authenticated = True
			log.debug ( f'authenticated {self.user!r} using {request.mechanism}' )
		finally:
			self._wipe_password()

	def _wipe_password ( self ) -> None:
		if self._password is not None:
			self._password[:] = bytes ( len ( self._password ) )
			self._password = None

	def _authenticated_request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		if not self.authenticated:
			raise UsageError ( 'not authenticated' )
		return self._request ( request )

	def list_scripts ( self ) -> List[Tuple[str,bool]]:
		try:
			return self._authenticated_request ( proto.ListScriptsRequest() ).scripts
		except CommandError as e:
			raise CommandError ( f'Cannot list scripts: {e.message}' ) from e

	def get_script ( self, name: str ) -> str:
		request = proto.GetScriptRequest ( name )
		try:
			return self._authenticated_request ( request ).script
		except CommandError as e:
			raise CommandError ( f'Cannot get script: {e.message}' ) from e

	def put_script ( self, name: str, data: Union[str,BYTES] ) -> None:
		self._authenticated_request ( proto.PutScriptRequest ( name, data ) )

	def delete_script ( self, name: str ) -> None:
		self._authenticated_request ( proto.DeleteScriptRequest ( name ) )

	def set_active ( self, name: Opt[str] ) -> None:
		self._authenticated_request ( proto.SetActiveRequest ( name ) )

	def have_space ( self, name: str, size: int ) -> bool:
		log = logger.getChild ( 'Client.have_space' )
		request = proto.HaveSpaceRequest ( name, size )
		try:
			self._authenticated_request ( request )
		except CommandError as e:
			log.debug ( f'no space for {name!r}: {e.message}' )
			return False
		return True

	def logout ( self ) -> None:
		try:
			self._request ( proto.LogoutRequest() )
		finally:
			self.close()

	def on_StartTlsBeginEvent ( self, event: proto.StartTlsBeginEvent ) -> None:
		with close_if_oserror():
			self.transport.starttls_client ( self.server_hostname )
