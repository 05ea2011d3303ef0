# coverage run --branch tests.py && coverage report -m

import logging
import sys
import unittest

logging.basicConfig (
	stream = sys.stdout,
	#level = logging.DEBUG,
	format = (
		#'%(asctime)s '
		'[%(name)s %(levelname)s] '
		'%(message)s'
	),
)

suite = unittest.TestLoader().discover ( 'tests', pattern = '*_test.py', top_level_dir = '.' )
result = unittest.TextTestRunner ( verbosity = 1, failfast = True ).run ( suite )
sys.exit ( not result.wasSuccessful() )
