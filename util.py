import base64
from typing import Union

BYTES = Union[bytes,bytearray,memoryview]
bytes_types = ( bytes, bytearray, memoryview )

def b2s ( b: BYTES, encoding: str = 'utf-8', errors: str = 'strict' ) -> str:
	return bytes ( b ).decode ( encoding, errors )

def s2b ( s: str, encoding: str = 'utf-8', errors: str = 'strict' ) -> bytes:
	return s.encode ( encoding, errors )

def b64_encode ( b: BYTES ) -> str:
	return b2s ( base64.b64encode ( bytes ( b ) ), 'us-ascii' )

def b64_encode_str ( s: str ) -> str:
	return b64_encode ( s2b ( s ) )

def chomp ( b: bytes ) -> bytes:
	# drop a single trailing line terminator
	if b.endswith ( b'\r\n' ):
		return b[:-2]
	if b.endswith ( ( b'\n', b'\r' ) ):
		return b[:-1]
	return b
