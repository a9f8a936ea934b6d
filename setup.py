from setuptools import setup

setup (name = 'pgpacket',
       version = '20261019',
       description = 'OpenPGP packet and signature subpacket codec.',
       package_dir = {'': 'lib/python'},
       packages = ['pgpacket'],
       python_requires = '>=3.8',
       install_requires = [
           'cs.deco',
           'cs.lex',
           'cs.logutils',
           'cs.pfx',
           'icontract',
           'typeguard>=3',
       ],
       extras_require = {
           'test': ['cs.py.modules', 'pytest'],
       })
