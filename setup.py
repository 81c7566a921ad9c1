from setuptools import setup
import io
import re


with io.open('README.md', encoding='utf-8') as f:
    long_description = f.read()

with io.open('requirements.txt', encoding='utf-8') as f:
    requirements = [r for r in f.read().split('\n') if len(r)]

with io.open('pyln/lightningd/__init__.py', encoding='utf-8') as f:
    version = re.search(r'__version__\s*=\s*"([^"]*)"', f.read()).group(1)


setup(name='pyln-lightningd',
      version=version,
      description='Run a throwaway regtest lightningd for integration tests',
      long_description=long_description,
      long_description_content_type='text/markdown',
      url='http://github.com/ElementsProject/lightning',
      license='MIT',
      packages=['pyln.lightningd'],
      install_requires=requirements,
      extras_require={
          'test': ['pytest'],
      },
      entry_points={
          'console_scripts': [
              'pyln-lightningd-download=pyln.lightningd.download:main',
          ],
      },
      zip_safe=True)
