import logging
import os
import traceback

import numpy as np
import pandas as pd
from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.utils import secure_filename

from metrics_collector import PerformanceMetrics
from tku_pso import TKUPSO, DEFAULT_POP_SIZE, DEFAULT_ITERATIONS, DEFAULT_K, DEFAULT_AVG_ESTIMATE
from utility_db import UtilityDatabase

log = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

app.config['UPLOAD_FOLDER'] = 'uploads'
app.config['TKU_POP_SIZE'] = DEFAULT_POP_SIZE
app.config['TKU_ITERATIONS'] = DEFAULT_ITERATIONS
app.config['TKU_K'] = DEFAULT_K
app.config['TKU_AVG_ESTIMATE'] = DEFAULT_AVG_ESTIMATE

# Variabel global untuk menyimpan jalur file dan data mentah
uploaded_path = None
raw_data = None


def allowed_file(filename):
    allowed_extensions = ['csv', 'xlsx']
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed_extensions


def baca_file(filepath):
    if filepath.endswith('.csv'):
        return pd.read_csv(filepath)
    return pd.read_excel(filepath)


def _ke_python(nilai):
    # jsonify tidak mengenal tipe numpy
    return nilai.item() if isinstance(nilai, np.generic) else nilai


def ambil_parameter(data):
    params = {
        'k': data.get('k', app.config['TKU_K']),
        'pop_size': data.get('pop_size', app.config['TKU_POP_SIZE']),
        'iterations': data.get('iterations', app.config['TKU_ITERATIONS']),
    }
    for nama, nilai in params.items():
        if isinstance(nilai, bool) or not isinstance(nilai, int):
            raise ValueError(f"Parameter {nama} harus bilangan bulat")
    if params['k'] <= 0 or params['pop_size'] <= 0:
        raise ValueError("Parameter k dan pop_size harus positif")
    if params['iterations'] < 0:
        raise ValueError("Parameter iterations tidak boleh negatif")
    params['avg_estimate'] = bool(data.get('avg_estimate', app.config['TKU_AVG_ESTIMATE']))
    params['seed'] = data.get('seed')
    if params['seed'] is not None and (isinstance(params['seed'], bool) or not isinstance(params['seed'], int)):
        raise ValueError("Parameter seed harus bilangan bulat")
    return params


def run_tku_pso(df, params, kolom_id_transaksi='ID_PENJUALAN', kolom_id_item='KODE_BARANG',
                kolom_utilitas='UTILITY'):
    log.info("Menjalankan TKU-PSO dengan k=%s, pop_size=%s, iterations=%s",
             params['k'], params['pop_size'], params['iterations'])
    metrics = PerformanceMetrics()
    metrics.start_overall_measurement()

    db = UtilityDatabase(params['k'], kolom_id_transaksi=kolom_id_transaksi,
                         kolom_id_item=kolom_id_item, kolom_utilitas=kolom_utilitas)
    db.muat_data(df).siapkan()
    tku = TKUPSO(db, pop_size=params['pop_size'], iterations=params['iterations'], k=params['k'],
                 avg_estimate=params['avg_estimate'], rng=np.random.default_rng(params['seed']))
    solutions = tku.run()
    metrics.end_overall_measurement()

    # Nama barang opsional, hanya untuk tampilan
    kode_nama_mapping = {}
    if 'NAMA_BARANG' in df.columns:
        kode_nama_mapping = df[[kolom_id_item, 'NAMA_BARANG']].drop_duplicates() \
            .set_index(kolom_id_item)['NAMA_BARANG'].to_dict()

    hasil_format = []
    for itemset, total_utility in tku.hasil():
        itemset = [_ke_python(kode) for kode in itemset]
        hasil_format.append({
            'kode_barang': itemset,
            'nama_barang': [kode_nama_mapping.get(kode, f'Produk {kode}') for kode in itemset],
            'total_utility': _ke_python(total_utility),
        })
    log.info("TKU-PSO selesai, jumlah itemset: %d", len(hasil_format))
    return {
        'message': 'TKU-PSO berhasil dijalankan',
        'itemset_utilitas_tinggi': hasil_format,
        'min_util': _ke_python(db.min_util),
        'twu_per_item': {str(k): _ke_python(v) for k, v in db.twu_per_item.items()},
        'stats': {k: _ke_python(v) for k, v in metrics.get_overall_metrics_summary(solutions).items()},
    }


@app.route('/upload', methods=['POST'])
def upload_file():
    global uploaded_path, raw_data
    file = request.files.get('file')
    if not file:
        return jsonify({'error': 'Tidak ada file yang dikirim'}), 400

    # Nama file dari klien tidak boleh menunjuk ke luar folder upload
    filename = secure_filename(file.filename)
    if not allowed_file(filename):
        return jsonify({'error': 'File tidak valid. Harap unggah file CSV atau Excel.'}), 400

    try:
        os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
        filepath = os.path.join(app.config['UPLOAD_FOLDER'], filename)
        file.save(filepath)
        raw_data = baca_file(filepath)
        uploaded_path = filepath
        return jsonify({'message': 'File berhasil diupload', 'file_path': filepath}), 200
    except Exception as e:
        log.error("Upload error: %s", traceback.format_exc())
        return jsonify({'error': f'Gagal mengupload file: {str(e)}'}), 500


@app.route('/raw_preview', methods=['GET'])
def raw_preview():
    if raw_data is None:
        return jsonify({'error': 'Belum ada file yang diupload atau file tidak ditemukan'}), 400

    n = request.args.get('n', 20, type=int)
    df = raw_data.head(n).astype(object).where(raw_data.head(n).notna(), None)
    return jsonify({
        'preview': df.to_dict(orient='records'),
        'total_rows': len(raw_data),
        'total_columns': len(raw_data.columns),
        'column_names': list(raw_data.columns)
    })


@app.route('/run_tku_pso', methods=['POST'])
def run_tku_pso_route():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Body request harus berupa objek JSON'}), 400

    if not data.get('data') and raw_data is None:
        return jsonify({'error': 'Belum ada file yang diupload atau data yang dikirim'}), 400

    try:
        params = ambil_parameter(data)

        # Jika data sudah disediakan dalam request, gunakan itu
        if data.get('data'):
            df = pd.DataFrame(data['data'])
        else:
            df = raw_data.copy()

        # Pastikan kolom UTILITY ada
        if 'UTILITY' not in df.columns and all(col in df.columns for col in ['QTY', 'HARGASATUAN']):
            df['UTILITY'] = pd.to_numeric(df['QTY']) * pd.to_numeric(df['HARGASATUAN'])

        result = run_tku_pso(df, params)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        error_details = traceback.format_exc()
        log.error("TKU-PSO route error: %s", error_details)
        return jsonify({'error': f'Gagal menjalankan TKU-PSO: {str(e)}', 'details': error_details}), 500
    return jsonify(result), 200


@app.route('/get_data_status', methods=['GET'])
def get_data_status():
    return jsonify({
        'uploaded_path': uploaded_path,
        'raw_data': raw_data is not None,
    })


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )
    app.run(debug=True)
