import ssl

import trustme # pip install trustme

class ServerOnly:
	'''
	A throw-away CA and one server certificate, so STARTTLS can be exercised
	over a socketpair without touching the system trust store.
	'''
	def __init__ ( self, *,
		server_hostname: str, # ex: 'sieve.example.org'
	) -> None:
		self.server_hostname = server_hostname
		self.ca = trustme.CA()
		self.server_cert = self.ca.issue_cert ( self.server_hostname )

	def server_context ( self ) -> ssl.SSLContext:
		ctx = ssl.SSLContext ( ssl.PROTOCOL_TLS_SERVER )
		self.server_cert.configure_cert ( ctx )
		return ctx

	def client_context ( self ) -> ssl.SSLContext:
		ctx = ssl.create_default_context ( ssl.Purpose.SERVER_AUTH )
		self.ca.configure_trust ( ctx )
		return ctx

	def untrusting_client_context ( self ) -> ssl.SSLContext:
		# trusts some other CA, so verifying our server certificate must fail
		ctx = ssl.create_default_context ( ssl.Purpose.SERVER_AUTH )
		trustme.CA().configure_trust ( ctx )
		return ctx
