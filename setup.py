#! /usr/bin/env python

from setuptools import setup, find_packages

# Force distutils to use py_compile.compile() function with 'doraise' argument
# set to True, in order to raise an exception on compilation errors
import py_compile
orig_py_compile = py_compile.compile

def doraise_py_compile(file, cfile=None, dfile=None, doraise=False):
	orig_py_compile(file, cfile=cfile, dfile=dfile, doraise=True)

py_compile.compile = doraise_py_compile


# Trove classifiers for PyPI
classifiers = {"classifiers": [
	"Development Status :: 3 - Alpha",
	"Environment :: Other Environment",
	"Intended Audience :: Developers",
	"License :: OSI Approved :: BSD License",
	"Natural Language :: English",
	"Operating System :: OS Independent",
	"Programming Language :: Python",
	"Programming Language :: Python :: 3",
	"Programming Language :: Python :: 3.10",
	"Topic :: Multimedia :: Graphics",
	"Topic :: Text Processing :: Fonts",
]}

long_description = """\
iftTools is a client-side library for Incremental Font Transfer.
It reads the patch maps embedded in an incremental font, selects the
patches needed to cover a set of code points, layout features and
variation ranges, fetches them through a caller supplied function and
applies table-keyed and glyph-keyed patches until the font supports
the requested subset.
"""


setup(
	name="ift-tools",
	version="0.1.0",
	description="Client-side engine for Incremental Font Transfer",
	license="OpenSource, BSD-style",
	platforms=["Any"],
	long_description=long_description,
	package_dir={'': 'Lib'},
	packages=find_packages("Lib"),
	python_requires=">=3.10",
	install_requires=[
		"fonttools>=4.22",
		"brotli>=1.0",
	],
	extras_require={
		"testing": [
			"pytest>=3.0",
		],
	},
	**classifiers
)
