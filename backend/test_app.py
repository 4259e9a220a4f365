import importlib
import io
import os
import tempfile
import unittest
from unittest import mock

import app as app_module

CSV_DATA = (
    "ID_PENJUALAN,KODE_BARANG,NAMA_BARANG,QTY,HARGASATUAN\n"
    "T1,A,Apel,2,5000\n"
    "T1,B,Beras,1,7000\n"
    "T1,C,Cabai,1,3000\n"
    "T2,A,Apel,1,5000\n"
    "T2,C,Cabai,3,3000\n"
    "T2,D,Daun,2,2000\n"
    "T3,B,Beras,2,7000\n"
    "T3,C,Cabai,1,3000\n"
    "T3,E,Es,4,1000\n"
    "T4,A,Apel,1,5000\n"
    "T4,B,Beras,3,7000\n"
    "T4,E,Es,2,1000\n"
)


class TestApp(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        app = app_module.app
        app.config['TESTING'] = True
        app.config['UPLOAD_FOLDER'] = self.tmp.name
        app_module.uploaded_path = None
        app_module.raw_data = None
        self.client = app.test_client()

    def tearDown(self):
        self.tmp.cleanup()

    def upload(self, isi=CSV_DATA, nama='penjualan.csv'):
        return self.client.post('/upload', data={'file': (io.BytesIO(isi.encode()), nama)},
                                content_type='multipart/form-data')

    def test_upload_dan_preview(self):
        response = self.upload()
        self.assertEqual(response.status_code, 200)

        response = self.client.get('/raw_preview?n=5')
        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(data['preview']), 5)
        self.assertEqual(data['total_rows'], 12)
        self.assertIn('KODE_BARANG', data['column_names'])

        status = self.client.get('/get_data_status').get_json()
        self.assertTrue(status['raw_data'])

    def test_upload_file_tidak_valid(self):
        response = self.upload(nama='data.pdf')
        self.assertEqual(response.status_code, 400)
        response = self.client.post('/upload', data={}, content_type='multipart/form-data')
        self.assertEqual(response.status_code, 400)

    def test_upload_nama_file_tidak_keluar_folder(self):
        response = self.upload(nama='../tku_pso_di_luar.csv')
        tujuan = os.path.join(self.tmp.name, 'tku_pso_di_luar.csv')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['file_path'], tujuan)
        self.assertTrue(os.path.exists(tujuan))
        self.assertFalse(os.path.exists(os.path.join(os.path.dirname(self.tmp.name), 'tku_pso_di_luar.csv')))

    def test_preview_tanpa_upload(self):
        self.assertEqual(self.client.get('/raw_preview').status_code, 400)

    def test_run_tku_pso(self):
        self.upload()
        response = self.client.post('/run_tku_pso', json={'k': 3, 'pop_size': 10, 'iterations': 300, 'seed': 7})
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['min_util'], 15000)
        self.assertEqual(data['twu_per_item']['B'], 69000)
        hasil = [(set(h['kode_barang']), h['total_utility']) for h in data['itemset_utilitas_tinggi']]
        self.assertEqual(hasil, [({'A', 'B'}, 43000), ({'B'}, 42000), ({'B', 'E'}, 41000)])
        self.assertEqual(data['itemset_utilitas_tinggi'][1]['nama_barang'], ['Beras'])
        self.assertEqual(data['stats']['discovered_utility'], 126000)

    def test_run_tku_pso_dengan_data_langsung(self):
        data = [
            {'ID_PENJUALAN': 1, 'KODE_BARANG': 'X', 'UTILITY': 5},
            {'ID_PENJUALAN': 1, 'KODE_BARANG': 'Y', 'UTILITY': 3},
            {'ID_PENJUALAN': 2, 'KODE_BARANG': 'Y', 'UTILITY': 4},
        ]
        response = self.client.post('/run_tku_pso', json={'k': 1, 'pop_size': 2, 'iterations': 50, 'seed': 0, 'data': data})
        hasil = response.get_json()['itemset_utilitas_tinggi']

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(hasil), 1)
        self.assertEqual(hasil[0]['total_utility'], 8)

    def test_run_tku_pso_tanpa_data(self):
        response = self.client.post('/run_tku_pso', json={'k': 3})
        self.assertEqual(response.status_code, 400)

    def test_parameter_tidak_valid(self):
        self.upload()
        for params in ({'k': 0}, {'pop_size': -1}, {'iterations': -2}, {'k': 'tiga'}, {'seed': 1.5}):
            response = self.client.post('/run_tku_pso', json=params)
            self.assertEqual(response.status_code, 400, params)
            self.assertIn('error', response.get_json())

    def test_kolom_hilang(self):
        self.upload("ID_PENJUALAN,NAMA_BARANG\nT1,Apel\n")
        response = self.client.post('/run_tku_pso', json={'k': 1, 'iterations': 1})
        self.assertEqual(response.status_code, 400)

    def test_body_atau_data_tidak_valid(self):
        qty_bukan_angka = [{'ID_PENJUALAN': 1, 'KODE_BARANG': 'X', 'QTY': 'x', 'HARGASATUAN': 'y'}]
        for body in ({'data': 5}, [1, 2], {'data': qty_bukan_angka}):
            response = self.client.post('/run_tku_pso', json=body)
            self.assertEqual(response.status_code, 400, body)
            self.assertIn('error', response.get_json())

    def test_kesalahan_server_dalam_json(self):
        self.upload()
        with mock.patch.object(app_module, 'run_tku_pso', side_effect=RuntimeError('rusak')):
            response = self.client.post('/run_tku_pso', json={'k': 1})
        data = response.get_json()

        self.assertEqual(response.status_code, 500)
        self.assertIn('rusak', data['error'])
        self.assertIn('RuntimeError', data['details'])

    def test_import_tidak_mengatur_logging(self):
        with mock.patch('logging.basicConfig') as basic_config:
            importlib.reload(app_module)
        basic_config.assert_not_called()


if __name__ == '__main__':
    unittest.main(verbosity=0)
