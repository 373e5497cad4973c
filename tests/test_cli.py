"""
Tests for the command-line interface.
"""
import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock
import numpy as np
from laplace_border import cli
from laplace_border.io_utils import read_pgm, write_pgm
from laplace_border.processing import Roi, filter_laplace_border


class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = self._tmp.name
        self.image = np.random.default_rng(11).integers(0, 256, (24, 30), dtype=np.uint8)
        self.input_path = os.path.join(self.tmp_dir, 'scene.pgm')
        write_pgm(self.input_path, self.image)

    def tearDown(self):
        self._tmp.cleanup()

    def run_main(self, *argv):
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = cli.main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_default_output_path(self):
        self.assertEqual(cli.default_output_path('/data/aditya.pgm'),
                         '/data/aditya_filterLaplaceBorder.pgm')
        self.assertEqual(cli.default_output_path('/data.v2/scan'),
                         '/data.v2/scan_filterLaplaceBorder.pgm')

    def test_parse_roi(self):
        self.assertEqual(cli.parse_roi('1,2,3,4'), Roi(1, 2, 3, 4))

    def test_filters_and_saves(self):
        code, out, err = self.run_main(f'--input={self.input_path}', '--no-info')

        self.assertEqual(code, 0, err)
        output_path = os.path.join(self.tmp_dir, 'scene_filterLaplaceBorder.pgm')
        self.assertIn(f'Successfully opened: <{self.input_path}>', out)
        self.assertIn(f'Saved image: {output_path}', out)
        np.testing.assert_array_equal(read_pgm(output_path), filter_laplace_border(self.image))

    def test_explicit_output_and_options(self):
        output_path = os.path.join(self.tmp_dir, 'out', 'edges.pgm')
        code, _, err = self.run_main(f'--input={self.input_path}', f'--output={output_path}',
                                     '--no-info', '--mask-size', '3', '--border', 'mirror',
                                     '--roi', '2,3,20,10', '--workers', '2')

        self.assertEqual(code, 0, err)
        expected = filter_laplace_border(self.image, mask_size=3, roi=Roi(2, 3, 20, 10), border='mirror')
        np.testing.assert_array_equal(read_pgm(output_path), expected)

    def test_reference_comparison(self):
        reference_path = os.path.join(self.tmp_dir, 'reference.pgm')
        write_pgm(reference_path, filter_laplace_border(self.image))
        output_path = os.path.join(self.tmp_dir, 'result.pgm')

        code, out, _ = self.run_main(f'--input={self.input_path}', f'--output={output_path}',
                                     '--no-info', f'--reference={reference_path}')

        self.assertEqual(code, 0)
        self.assertIn('identical: True', out)

    def test_runtime_info_printed(self):
        output_path = os.path.join(self.tmp_dir, 'result.pgm')
        code, out, _ = self.run_main(f'--input={self.input_path}', f'--output={output_path}')

        self.assertEqual(code, 0)
        self.assertIn('NumPy Version', out)
        self.assertIn('Starting...', out)

    def test_default_input(self):
        output_path = os.path.join(self.tmp_dir, 'sample_out.pgm')
        code, out, err = self.run_main(f'--output={output_path}', '--no-info')

        self.assertEqual(code, 0, err)
        self.assertIn(cli.DEFAULT_INPUT, out)
        self.assertEqual(read_pgm(output_path).shape, (64, 64))

    def test_missing_input(self):
        missing = os.path.join(self.tmp_dir, 'missing.pgm')
        code, _, err = self.run_main(f'--input={missing}', '--no-info')

        self.assertEqual(code, 1)
        self.assertIn(f'Unable to open: <{missing}>', err)

    def test_decode_error(self):
        broken = os.path.join(self.tmp_dir, 'broken.pgm')
        with open(broken, 'wb') as f:
            f.write(b'P5\n10 10\n255\n' + bytes(5))

        code, _, err = self.run_main(f'--input={broken}', '--no-info')

        self.assertEqual(code, 1)
        self.assertIn('Error occurred', err)
        self.assertFalse(os.path.exists(os.path.join(self.tmp_dir, 'broken_filterLaplaceBorder.pgm')))

    def test_unexpected_error(self):
        output_path = os.path.join(self.tmp_dir, 'never.pgm')
        with mock.patch.object(cli, 'process_image', side_effect=RuntimeError("boom")):
            code, _, err = self.run_main(f'--input={self.input_path}', f'--output={output_path}',
                                         '--no-info')

        self.assertEqual(code, 1)
        self.assertIn('An unknown error occurred. Aborting.', err)
        self.assertFalse(os.path.exists(output_path))

    def test_roi_outside_image(self):
        code, _, err = self.run_main(f'--input={self.input_path}', '--no-info', '--roi', '20,20,30,30')

        self.assertEqual(code, 1)
        self.assertIn('outside', err)

    def test_invalid_arguments(self):
        with self.assertRaises(SystemExit) as ctx:
            self.run_main('--roi', '1,2,3')
        self.assertEqual(ctx.exception.code, 2)

        with self.assertRaises(SystemExit):
            self.run_main('--workers', '0')

    def test_runtime_info(self):
        info = cli.runtime_info()
        for key in ('python', 'numpy', 'pillow', 'scipy', 'rasterio', 'cpu_count'):
            self.assertIn(key, info)


if __name__ == '__main__':
    unittest.main()
