from setuptools import setup
from setuptools import find_packages

config = {
    'name' : 'CODA',
    'version' : '0.1.0',
    'description' : 'COnstrained Dynamics Algorithms for rigid body systems',
    'install_requires' : [
        'numpy',
        'scipy',
        'prettytable'
    ],
    'extras_require' : {
        'test' : ['pytest']
    },
    'python_requires' : '>=3.8',
    'package_dir' : {'' : 'src'},
    'packages' : find_packages('src'),
}

setup(**config)
